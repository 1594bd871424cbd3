"""
Resolving generation configuration and per-call context.
"""
from typing import Optional, Sequence

from models import (
    ApiSelection,
    AuthorsNote,
    Character,
    ChatContext,
    ChatMessage,
    ChatMode,
    GenerationConfig,
    InstructMode,
    WorldInfoEntry,
)
from services.llm import (
    CHAT_COMPLETION_ENDPOINT,
    TEXT_COMPLETION_ENDPOINT,
    build_chat_completion_request,
    build_text_completion_request,
)
from services.prompt import (
    activate_world_info,
    build_chat_messages,
    build_instruct_prompt,
    chat_stop_strings,
    compose_system_prompt,
    instruct_stop_strings,
)
from utils import get_logger
from .stores import PersonaStore, TemplateStore, WorldInfoStore

logger = get_logger("generation.context")

TEXT_COMPLETION_APIS = {"textgenerationwebui", "kobold", "koboldhorde", "novel", "ooba"}
CHAT_COMPLETION_APIS = {
    "openai", "claude", "windowai", "openrouter", "ai21", "mistralai",
    "cohere", "perplexity", "groq", "makersuite", "01ai",
}
CHAT_COMPLETION_SOURCES = {
    "openai", "nanogpt", "openrouter", "claude", "mistralai", "cohere",
    "perplexity", "groq", "makersuite", "ai21", "custom", "deepseek",
    "xai", "fireworks", "pollinations", "chutes", "electronhub",
}


def uses_chat_completion(api: ApiSelection) -> bool:
    """Decide the backend mode from the selected API."""
    if api.main_api in TEXT_COMPLETION_APIS:
        return False
    return api.main_api in CHAT_COMPLETION_APIS or api.chat_completion_source in CHAT_COMPLETION_SOURCES


async def load_generation_config(templates: TemplateStore) -> GenerationConfig:
    """Read the template store once and freeze the result."""
    api = await templates.current_api()
    template = await templates.current_instruct_template()

    if uses_chat_completion(api):
        mode = ChatMode(
            template=template,
            prompt_order=tuple(await templates.current_chat_prompt_order()),
            prompts=await templates.current_chat_prompts(),
        )
    else:
        mode = InstructMode(template=template)

    config = GenerationConfig(
        mode=mode,
        system_prompt=await templates.current_system_prompt(),
        preset=await templates.current_preset(),
        api=api,
        world_info_settings=await templates.current_world_info_settings(),
    )
    logger.info("Generation config resolved: mode=%s api=%s", mode.kind, api.main_api)
    return config


async def _load_lorebook(store: WorldInfoStore, name: str, origin: str) -> list[WorldInfoEntry]:
    try:
        entries = await store.get(name)
    except LookupError as e:
        logger.warning("World info '%s' unavailable, scanning without it: %s", name, e)
        return []
    # Tag by origin so uids from different lorebooks never collide
    return [entry.model_copy(update={"uid": f"{origin}:{entry.uid}"}) for entry in entries]


async def load_world_info(
    store: WorldInfoStore,
    character: Character,
    global_select: Sequence[str],
) -> list[WorldInfoEntry]:
    """Global lorebooks plus the character's attached one (skipped if already global)."""
    entries: list[WorldInfoEntry] = []
    for name in global_select:
        entries.extend(await _load_lorebook(store, name, "global"))
    attached = character.attached_world_info
    if attached and attached not in global_select:
        entries.extend(await _load_lorebook(store, attached, "char"))
    return entries


def authors_note_from(history: Sequence[ChatMessage]) -> Optional[AuthorsNote]:
    """The chat's author's note lives in the first message's metadata."""
    if history and history[0].metadata and history[0].metadata.content.strip():
        return history[0].metadata
    return None


async def build_chat_context(
    character: Character,
    personas: PersonaStore,
    world_info: WorldInfoStore,
    config: GenerationConfig,
    history: Sequence[ChatMessage],
) -> ChatContext:
    return ChatContext(
        character=character,
        persona=await personas.current(),
        world_info=tuple(await load_world_info(world_info, character, config.world_info_settings.global_select)),
        authors_note=authors_note_from(history),
        config=config,
    )


def build_request(
    history: Sequence[ChatMessage],
    new_message: str,
    context: ChatContext,
) -> tuple[str, dict]:
    """
    Build the backend endpoint and JSON body for one generation.

    Returns:
        (endpoint path, request body)
    """
    config = context.config
    mode = config.mode
    character = context.character
    persona = context.persona

    if isinstance(mode, ChatMode):
        messages = build_chat_messages(history, new_message, character, context)
        stop = chat_stop_strings(mode.template, persona.name)
        body = build_chat_completion_request(messages, config, stop).model_dump(exclude_none=True)
        return CHAT_COMPLETION_ENDPOINT, body

    template = mode.template
    system_prompt = compose_system_prompt(config.system_prompt, template, character, persona)
    activated = activate_world_info(
        context.world_info, new_message, history, character, config.world_info_settings
    )
    prompt = build_instruct_prompt(
        history, new_message, character, template, system_prompt,
        persona=persona, world_info=activated, authors_note=context.authors_note,
    )
    stop = instruct_stop_strings(template, character.name, persona.name)
    body = build_text_completion_request(prompt, config, stop).model_dump()
    return TEXT_COMPLETION_ENDPOINT, body
