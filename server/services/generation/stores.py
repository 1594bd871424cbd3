"""
Collaborator contracts consumed by the generation pipeline.

The pipeline only reads from these (ChatStore is also written to); storage.py
has JSON-file implementations, tests use in-memory fakes.
"""
from typing import Optional, Protocol

from models import (
    ApiSelection,
    Character,
    ChatMessage,
    InstructTemplate,
    Persona,
    PromptOrderEntry,
    SamplerPreset,
    WorldInfoEntry,
    WorldInfoSettings,
)


class CharacterStore(Protocol):
    async def get(self, character_id: str) -> Character:
        """Raise LookupError if the character does not exist."""
        ...


class WorldInfoStore(Protocol):
    async def get(self, name: str) -> list[WorldInfoEntry]:
        """Raise LookupError if the lorebook does not exist."""
        ...


class PersonaStore(Protocol):
    async def current(self) -> Persona: ...


class TemplateStore(Protocol):
    async def current_instruct_template(self) -> Optional[InstructTemplate]: ...

    async def current_chat_prompt_order(self) -> list[PromptOrderEntry]: ...

    async def current_chat_prompts(self) -> dict[str, str]: ...

    async def current_system_prompt(self) -> str: ...

    async def current_preset(self) -> SamplerPreset: ...

    async def current_world_info_settings(self) -> WorldInfoSettings: ...

    async def current_api(self) -> ApiSelection: ...


class ChatStore(Protocol):
    async def load(self) -> list[ChatMessage]: ...

    async def append(self, message: ChatMessage) -> None: ...

    async def replace(self, index: int, message: ChatMessage) -> None: ...

    async def delete(self, index: int) -> None: ...
