"""
Message-array assembly for chat-completion backends.
"""
from typing import Optional, Sequence

from models import (
    ChatCompletionMessage,
    ChatContext,
    ChatMessage,
    ChatMode,
    Character,
    InstructTemplate,
)
from utils import get_logger
from .macros import substitute
from .world_info import activate_world_info

logger = get_logger("prompt.chat")

STORED_PROMPTS = {"main", "nsfw", "jailbreak", "enhanceDefinitions"}
WORLD_INFO_MARKERS = {"worldInfoBefore", "worldInfoAfter"}


def _history_messages(history: Sequence[ChatMessage]) -> list[ChatCompletionMessage]:
    return [
        ChatCompletionMessage(role="user" if m.is_user else "assistant", content=m.displayed_content)
        for m in history
    ]


def build_chat_messages(
    history: Sequence[ChatMessage],
    new_message: str,
    character: Character,
    context: ChatContext,
) -> list[ChatCompletionMessage]:
    """
    Build the ordered message array for a chat-completion request.

    Sections are emitted in prompt-order; world info is emitted once at the
    first world-info marker. The new user message is always last.
    """
    mode = context.config.mode
    prompt_order = mode.prompt_order if isinstance(mode, ChatMode) else ()
    prompts = mode.prompts if isinstance(mode, ChatMode) else {}
    template = mode.template
    persona = context.persona

    def sub(text: str) -> str:
        return substitute(text, character, persona)

    def system(content: str) -> ChatCompletionMessage:
        return ChatCompletionMessage(role="system", content=content)

    world_info_added = False

    def world_info_text() -> str:
        triggered = activate_world_info(
            context.world_info, new_message, history, character,
            context.config.world_info_settings,
        )
        return "\n".join(sub(e.content) for e in triggered)

    messages: list[ChatCompletionMessage] = []
    history_inserted = False

    if prompt_order:
        for item in prompt_order:
            if not item.enabled:
                continue
            identifier = item.identifier

            if identifier in STORED_PROMPTS:
                content = prompts.get(identifier, "")
                if content.strip():
                    messages.append(system(sub(content)))
            elif identifier == "charDescription":
                if character.description.strip():
                    messages.append(system(f"[Character Description: {character.description}]"))
            elif identifier == "charPersonality":
                if character.personality.strip():
                    messages.append(system(f"[Character Personality: {character.personality}]"))
            elif identifier == "scenario":
                if character.scenario.strip():
                    messages.append(system(f"[Scenario: {character.scenario}]"))
            elif identifier == "dialogueExamples":
                if character.message_example.strip():
                    messages.append(system(f"[Example Dialogue:\n{character.message_example}]"))
            elif identifier == "personaDescription":
                if persona.description.strip():
                    messages.append(system(f"[{persona.name}'s persona: {sub(persona.description)}]"))
            elif identifier in WORLD_INFO_MARKERS:
                if world_info_added:
                    continue
                world_info_added = True
                content = world_info_text()
                if content.strip():
                    logger.debug("Adding world info at '%s' (%d chars)", identifier, len(content))
                    messages.append(system(content))
            elif identifier == "chatHistory":
                messages.extend(_history_messages(history))
                history_inserted = True
            else:
                # Custom stored prompt
                content = prompts.get(identifier, "")
                if content.strip():
                    messages.append(system(sub(content)))
    else:
        main = prompts.get("main") or context.config.system_prompt or (template.system_prompt if template else "")
        if main.strip():
            messages.append(system(sub(main)))
        if character.description.strip():
            messages.append(system(f"[Character: {character.description}]"))
        if character.personality.strip():
            messages.append(system(f"[Personality: {character.personality}]"))
        if character.scenario.strip():
            messages.append(system(f"[Scenario: {character.scenario}]"))
        nsfw = prompts.get("nsfw", "")
        if nsfw.strip():
            messages.append(system(sub(nsfw)))

    if not history_inserted:
        messages.extend(_history_messages(history))

    if not prompt_order:
        jailbreak = prompts.get("jailbreak", "")
        if jailbreak.strip():
            messages.append(system(sub(jailbreak)))

    messages.append(ChatCompletionMessage(role="user", content=new_message))
    return messages


def chat_stop_strings(template: Optional[InstructTemplate], user_name: str) -> list[str]:
    """Impersonation guards for a chat-completion request, deduplicated in order."""
    candidates = []
    if template is not None and template.stop_sequence.strip():
        candidates.append(template.stop_sequence)
    candidates.extend([f"\n{user_name}:", f"\n\n{user_name}:", f"{user_name}:"])
    if user_name != "User":
        candidates.extend(["\nUser:", "\n\nUser:"])
    return list(dict.fromkeys(candidates))
