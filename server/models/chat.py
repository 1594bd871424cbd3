"""
Domain models for the generation pipeline.

Characters, personas and lorebooks come from external stores; the
GenerationConfig and ChatContext snapshots are immutable and built once per
generation call.
"""
from typing import Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


PersonaPosition = Literal["in_prompt", "in_chat", "top_of_an", "bottom_of_an"]
WorldInfoPosition = Literal["before_char", "after_char", "at_depth"]
Role = Literal["system", "user", "assistant"]

# SillyTavern stores persona / world info positions as integers
PERSONA_POSITIONS: dict[int, PersonaPosition] = {
    0: "in_prompt",
    1: "in_chat",
    2: "top_of_an",
    3: "bottom_of_an",
}
WORLD_INFO_POSITIONS: dict[int, WorldInfoPosition] = {
    0: "before_char",
    1: "after_char",
    4: "at_depth",
}
ROLES: dict[int, Role] = {
    0: "system",
    1: "user",
    2: "assistant",
}


def parse_role(value) -> Role:
    """Accept SillyTavern's integer role codes as well as role names."""
    if isinstance(value, int):
        return ROLES.get(value, "system")
    return value or "system"


class Character(BaseModel):
    id: str = ""
    name: str = "Assistant"
    description: str = ""
    personality: str = ""
    scenario: str = ""
    system_prompt: str = ""
    message_example: str = ""
    first_message: str = ""
    alternate_greetings: list[str] = []
    attached_world_info: Optional[str] = None  # Lorebook name
    # Character-level author's note, overrides the chat's note when set
    depth_prompt: str = ""
    depth_prompt_depth: int = 4
    depth_prompt_role: Role = "system"

    @classmethod
    def from_card(cls, card: dict, character_id: str = "") -> "Character":
        """Build a Character from a V2 ({"data": {...}}) or flat character card."""
        data = card.get("data") or card
        extensions = data.get("extensions") or {}
        depth_prompt = extensions.get("depth_prompt") or {}
        return cls(
            id=character_id or card.get("id", ""),
            name=data.get("name") or "Assistant",
            description=data.get("description") or "",
            personality=data.get("personality") or "",
            scenario=data.get("scenario") or "",
            system_prompt=data.get("system_prompt") or "",
            message_example=data.get("mes_example") or "",
            first_message=data.get("first_mes") or "",
            alternate_greetings=list(data.get("alternate_greetings") or []),
            attached_world_info=extensions.get("world") or None,
            depth_prompt=depth_prompt.get("prompt") or "",
            depth_prompt_depth=depth_prompt.get("depth", 4),
            depth_prompt_role=parse_role(depth_prompt.get("role")),
        )


class Persona(BaseModel):
    name: str = "User"
    description: str = ""
    position: PersonaPosition = "in_prompt"
    role: Role = "system"
    depth: int = 2
    is_selected: bool = False


class WorldInfoEntry(BaseModel):
    uid: str
    key: list[str] = []
    secondary_key: list[str] = []
    content: str = ""
    comment: str = ""
    constant: bool = False
    selective: bool = False
    case_sensitive: bool = False
    match_whole_words: bool = False
    order: int = 100
    enabled: bool = True
    position: WorldInfoPosition = "before_char"
    depth: int = 4
    role: Role = "system"

    @classmethod
    def from_st_entry(cls, entry: dict) -> "WorldInfoEntry":
        """Map a SillyTavern lorebook entry (camelCase, integer position) to an entry."""
        position = entry.get("position", 0)
        if isinstance(position, int):
            position = WORLD_INFO_POSITIONS.get(position, "before_char")
        return cls(
            uid=str(entry.get("uid", entry.get("id", ""))),
            key=list(entry.get("key") or entry.get("keys") or []),
            secondary_key=list(entry.get("keysecondary") or entry.get("secondary_key") or []),
            content=entry.get("content") or "",
            comment=entry.get("comment") or "",
            constant=bool(entry.get("constant", False)),
            selective=bool(entry.get("selective", False)),
            case_sensitive=bool(entry.get("caseSensitive", entry.get("case_sensitive")) or False),
            match_whole_words=bool(entry.get("matchWholeWords", entry.get("match_whole_words")) or False),
            order=entry.get("order", 100),
            enabled=not entry.get("disable", not entry.get("enabled", True)),
            position=position,
            depth=entry.get("depth", 4),
            role=parse_role(entry.get("role")),
        )


class WorldInfoSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    depth: int = 2  # Number of prior messages in the scan window
    global_select: list[str] = []  # Globally active lorebook names


class InstructTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    system_prompt: str = ""
    input_sequence: str = ""
    output_sequence: str = ""
    system_sequence: str = ""
    input_suffix: str = ""
    output_suffix: str = ""
    system_suffix: str = ""
    first_output_sequence: str = ""
    last_output_sequence: str = ""
    stop_sequence: str = ""


class PromptOrderEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    enabled: bool = True


class AuthorsNote(BaseModel):
    content: str = ""
    depth: int = 4
    role: Role = "system"


class ChatMessage(BaseModel):
    content: str
    is_user: bool = False
    metadata: Optional[AuthorsNote] = None
    swipes: Optional[list[str]] = None
    swipe_id: int = 0

    @property
    def displayed_content(self) -> str:
        if self.swipes and 0 <= self.swipe_id < len(self.swipes):
            return self.swipes[self.swipe_id]
        return self.content


class ChatCompletionMessage(BaseModel):
    role: Role
    content: str


class SamplerPreset(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_new_tokens: int = 300
    truncation_length: int = 2048
    temperature: float = 0.7
    top_p: float = 0.5
    top_k: int = 40
    min_p: float = 0.0
    typical_p: float = 1.0
    rep_pen: float = 1.2
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0


class ApiSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    main_api: str = "textgenerationwebui"
    chat_completion_source: str = ""
    api_type: str = ""  # text-completion backend type (koboldcpp, ooba, ...)
    api_server: str = ""  # Direct backend URL, used for the out-of-band abort
    model: str = ""
    custom_url: str = ""


class InstructMode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["instruct"] = "instruct"
    template: Optional[InstructTemplate] = None


class ChatMode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["chat"] = "chat"
    template: Optional[InstructTemplate] = None  # Only its stop sequence is used
    prompt_order: tuple[PromptOrderEntry, ...] = ()
    prompts: dict[str, str] = {}  # identifier -> stored prompt text


GenerationMode = Union[InstructMode, ChatMode]


class GenerationConfig(BaseModel):
    """Everything about *how* to generate, resolved once per session."""
    model_config = ConfigDict(frozen=True)

    mode: GenerationMode = Field(default_factory=InstructMode, discriminator="kind")
    system_prompt: str = ""
    preset: SamplerPreset = SamplerPreset()
    api: ApiSelection = ApiSelection()
    world_info_settings: WorldInfoSettings = WorldInfoSettings()


class ChatContext(BaseModel):
    """Read-only snapshot for a single generation call."""
    model_config = ConfigDict(frozen=True)

    character: Character
    persona: Persona = Persona()
    world_info: tuple[WorldInfoEntry, ...] = ()
    authors_note: Optional[AuthorsNote] = None
    config: GenerationConfig = GenerationConfig()


class TokenEvent(BaseModel):
    type: Literal["token"] = "token"
    delta: str
    accumulated: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    text: str


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


StreamEvent = Union[TokenEvent, CompleteEvent, ErrorEvent]
