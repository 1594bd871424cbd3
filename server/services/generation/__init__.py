"""
Generation services.
"""
from .stores import CharacterStore, WorldInfoStore, PersonaStore, TemplateStore, ChatStore
from .storage import JsonCharacterStore, JsonWorldInfoStore, JsonSettingsStore, JsonChatStore
from .context import (
    uses_chat_completion,
    load_generation_config,
    load_world_info,
    build_chat_context,
    build_request,
)
from .session import GenerationSession, GenerationState, SessionError

__all__ = [
    "CharacterStore",
    "WorldInfoStore",
    "PersonaStore",
    "TemplateStore",
    "ChatStore",
    "JsonCharacterStore",
    "JsonWorldInfoStore",
    "JsonSettingsStore",
    "JsonChatStore",
    "uses_chat_completion",
    "load_generation_config",
    "load_world_info",
    "build_chat_context",
    "build_request",
    "GenerationSession",
    "GenerationState",
    "SessionError",
]
