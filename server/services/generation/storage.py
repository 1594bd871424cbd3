"""
JSON-file implementations of the collaborator stores.

Layout under settings.data_dir:
    characters/<id>.json   character cards (V2 or flat)
    worldbooks/<name>.json SillyTavern lorebook exports
    chats/<chat_id>.json   {"id", "character_id", "messages", ...}
    settings.json          api / preset / instruct / prompts / persona
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from config import settings
from models import (
    PERSONA_POSITIONS,
    ApiSelection,
    Character,
    ChatMessage,
    InstructTemplate,
    Persona,
    PromptOrderEntry,
    SamplerPreset,
    WorldInfoEntry,
    WorldInfoSettings,
    parse_role,
)
from utils import load_json, save_json


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _file_for(directory: Path, name: str) -> Path:
    """Path of a stored JSON file; names that could leave the directory are refused."""
    if not name or "/" in name or "\\" in name or ".." in name:
        raise ValueError(f"Invalid name: {name!r}")
    return directory / f"{name}.json"


class JsonCharacterStore:
    def __init__(self, directory: Optional[Path] = None):
        self.directory = directory or settings.data_dir / "characters"

    async def get(self, character_id: str) -> Character:
        try:
            path = _file_for(self.directory, character_id)
        except ValueError as e:
            raise LookupError(f"Character not found: {character_id}") from e
        card = await load_json(path)
        if not card:
            raise LookupError(f"Character not found: {character_id}")
        return Character.from_card(card, character_id)


class JsonWorldInfoStore:
    def __init__(self, directory: Optional[Path] = None):
        self.directory = directory or settings.data_dir / "worldbooks"

    async def get(self, name: str) -> list[WorldInfoEntry]:
        try:
            path = _file_for(self.directory, name)
        except ValueError as e:
            raise LookupError(f"Lorebook not found: {name}") from e
        data = await load_json(path)
        if data is None:
            raise LookupError(f"Lorebook not found: {name}")
        # SillyTavern exports entries as {"0": {...}, "1": {...}}
        entries = data.get("entries", [])
        if isinstance(entries, dict):
            entries = list(entries.values())
        return [WorldInfoEntry.from_st_entry(entry) for entry in entries]


class JsonSettingsStore:
    """Persona and template settings read from a single settings.json."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or settings.data_dir / "settings.json"

    async def _load(self) -> dict:
        return await load_json(self.path) or {}

    async def current(self) -> Persona:
        data = dict((await self._load()).get("persona") or {})
        if isinstance(data.get("position"), int):
            data["position"] = PERSONA_POSITIONS.get(data["position"], "in_prompt")
        if "role" in data:
            data["role"] = parse_role(data["role"])
        return Persona(**data)

    async def current_instruct_template(self) -> Optional[InstructTemplate]:
        data = (await self._load()).get("instruct")
        return InstructTemplate(**data) if data else None

    async def current_chat_prompt_order(self) -> list[PromptOrderEntry]:
        return [PromptOrderEntry(**item) for item in (await self._load()).get("prompt_order", [])]

    async def current_chat_prompts(self) -> dict[str, str]:
        return dict((await self._load()).get("prompts") or {})

    async def current_system_prompt(self) -> str:
        return (await self._load()).get("system_prompt") or ""

    async def current_preset(self) -> SamplerPreset:
        return SamplerPreset(**((await self._load()).get("preset") or {}))

    async def current_world_info_settings(self) -> WorldInfoSettings:
        return WorldInfoSettings(**((await self._load()).get("world_info") or {}))

    async def current_api(self) -> ApiSelection:
        return ApiSelection(**((await self._load()).get("api") or {}))


class JsonChatStore:
    """One chat file; every operation reads and rewrites it."""

    def __init__(self, chat_id: str, directory: Optional[Path] = None):
        self.chat_id = chat_id
        self.path = _file_for(directory or settings.data_dir / "chats", chat_id)

    async def _read(self) -> dict:
        data = await load_json(self.path)
        if data is None:
            now = _now()
            data = {"id": self.chat_id, "character_id": None, "messages": [], "created_at": now, "updated_at": now}
        return data

    async def _write(self, data: dict) -> None:
        data["updated_at"] = _now()
        await save_json(self.path, data)

    async def exists(self) -> bool:
        return self.path.exists()

    async def character_id(self) -> Optional[str]:
        return (await self._read()).get("character_id")

    async def set_character(self, character_id: str) -> None:
        data = await self._read()
        data["character_id"] = character_id
        await self._write(data)

    async def load(self) -> list[ChatMessage]:
        return [ChatMessage(**m) for m in (await self._read())["messages"]]

    async def append(self, message: ChatMessage) -> None:
        data = await self._read()
        data["messages"].append(message.model_dump())
        await self._write(data)

    async def replace(self, index: int, message: ChatMessage) -> None:
        data = await self._read()
        data["messages"][index] = message.model_dump()
        await self._write(data)

    async def delete(self, index: int) -> None:
        data = await self._read()
        del data["messages"][index]
        await self._write(data)
