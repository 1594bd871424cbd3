"""
Models package initialization.
"""
from .database import (
    init_db,
    DATABASE_PATH,
    RequestLog,
    RequestLogStats,
)
from .chat import (
    Character,
    Persona,
    WorldInfoEntry,
    WorldInfoSettings,
    InstructTemplate,
    PromptOrderEntry,
    AuthorsNote,
    ChatMessage,
    ChatCompletionMessage,
    SamplerPreset,
    ApiSelection,
    InstructMode,
    ChatMode,
    GenerationMode,
    GenerationConfig,
    ChatContext,
    TokenEvent,
    CompleteEvent,
    ErrorEvent,
    StreamEvent,
    PERSONA_POSITIONS,
    Role,
    parse_role,
)

__all__ = [
    "init_db",
    "DATABASE_PATH",
    "RequestLog",
    "RequestLogStats",
    "Character",
    "Persona",
    "WorldInfoEntry",
    "WorldInfoSettings",
    "InstructTemplate",
    "PromptOrderEntry",
    "AuthorsNote",
    "ChatMessage",
    "ChatCompletionMessage",
    "SamplerPreset",
    "ApiSelection",
    "InstructMode",
    "ChatMode",
    "GenerationMode",
    "GenerationConfig",
    "ChatContext",
    "TokenEvent",
    "CompleteEvent",
    "ErrorEvent",
    "StreamEvent",
    "PERSONA_POSITIONS",
    "Role",
    "parse_role",
]
