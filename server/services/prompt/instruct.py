"""
Prompt assembly for text-completion backends (instruct templates).
"""
from collections import defaultdict
from typing import Optional, Sequence

from models import (
    AuthorsNote,
    Character,
    ChatMessage,
    InstructTemplate,
    Persona,
    Role,
    WorldInfoEntry,
)
from .macros import substitute


def compose_system_prompt(
    system_prompt: str,
    template: Optional[InstructTemplate],
    character: Character,
    persona: Optional[Persona] = None,
) -> str:
    """
    Merge the global system prompt, the character's own system prompt and
    the character story string.

    The global prompt falls back to the template's default when blank.
    """
    persona = persona or Persona()
    global_prompt = system_prompt or (template.system_prompt if template else "")

    story = []
    if character.description.strip():
        story.append(character.description)
    if character.personality.strip():
        story.append(f"{character.name}'s personality: {character.personality}")
    if character.scenario.strip():
        story.append(f"Scenario: {character.scenario}")
    if persona.position == "in_prompt" and persona.description.strip():
        story.append(f"[{persona.name}'s persona: {persona.description}]")

    # Placeholders are left for the prompt builder to substitute
    parts = [p for p in [global_prompt, character.system_prompt, "\n\n".join(story)] if p.strip()]
    return "\n\n".join(parts)


def _close(suffix: str, template: InstructTemplate) -> str:
    """Turn terminator: the role suffix, else the stop sequence, ending in one newline."""
    closing = suffix if suffix.strip() else template.stop_sequence
    return closing if closing.endswith("\n") else closing + "\n"


def _wrap_system(content: str, template: InstructTemplate) -> str:
    if not content.strip():
        return ""
    return template.system_sequence + content + _close(template.system_suffix, template)


def _wrap_injection(role: Role, content: str, template: InstructTemplate) -> str:
    """Wrap an injected text in the sequences of the role it is sent as."""
    if not content.strip():
        return ""
    if role == "user":
        return template.input_sequence + content + _close(template.input_suffix, template)
    if role == "assistant":
        return template.output_sequence + content + _close(template.output_suffix, template)
    return _wrap_system(content, template)


def parse_message_examples(examples: str, character: Character, persona: Persona) -> list[tuple[bool, str]]:
    """Split `<START>`-separated example dialogue into (is_user, content) turns."""
    user_prefixes = ("{{user}}:", f"{persona.name}:".lower())
    char_prefixes = ("{{char}}:", f"{character.name}:".lower())

    turns: list[tuple[bool, str]] = []
    current_is_user = None
    current: list[str] = []

    def flush():
        text = "\n".join(current).strip()
        if current_is_user is not None and text:
            turns.append((current_is_user, text))

    for line in examples.split("\n"):
        stripped = line.strip()
        lowered = stripped.lower()
        if lowered == "<start>":
            continue
        if lowered.startswith(user_prefixes) or lowered.startswith(char_prefixes):
            flush()
            current_is_user = lowered.startswith(user_prefixes)
            current = [stripped.split(":", 1)[1].strip()]
        elif current_is_user is not None:
            current.append(stripped)
    flush()
    return turns


def _depth_injections(
    history_len: int,
    character: Character,
    persona: Persona,
    world_info: Sequence[WorldInfoEntry],
    authors_note: Optional[AuthorsNote],
) -> dict[int, list[tuple[Role, str]]]:
    """
    Map history insert positions to (role, text) injections.

    Depth d lands before the d-th message from the end; depth 0 lands after
    the last message.
    """
    injections: dict[int, list[tuple[Role, str]]] = defaultdict(list)

    def position(depth: int) -> int:
        return max(0, history_len - depth)

    # Entries sharing a depth and role are joined into one block
    by_depth: dict[tuple[int, Role], list[str]] = defaultdict(list)
    for entry in world_info:
        if entry.position == "at_depth" and entry.content.strip():
            by_depth[(entry.depth, entry.role)].append(entry.content)
    for depth, role in sorted(by_depth, key=lambda k: k[0]):
        injections[position(depth)].append((role, "\n".join(by_depth[(depth, role)])))

    persona_text = ""
    if persona.description.strip():
        persona_text = f"[{persona.name}'s persona: {persona.description}]"

    # Character depth prompt overrides the chat's author's note
    if character.depth_prompt.strip():
        note, note_depth, note_role = character.depth_prompt, character.depth_prompt_depth, character.depth_prompt_role
    elif authors_note and authors_note.content.strip():
        note, note_depth, note_role = authors_note.content, authors_note.depth, authors_note.role
    else:
        note, note_depth, note_role = "", 0, "system"

    if note:
        slot = injections[position(note_depth)]
        if persona.position == "top_of_an" and persona_text:
            slot.append((note_role, persona_text))
        slot.append((note_role, note))
        if persona.position == "bottom_of_an" and persona_text:
            slot.append((note_role, persona_text))

    if persona.position == "in_chat" and persona_text:
        injections[position(persona.depth)].append((persona.role, persona_text))

    return injections


def build_instruct_prompt(
    history: Sequence[ChatMessage],
    new_message: str,
    character: Character,
    template: Optional[InstructTemplate],
    system_prompt: str,
    persona: Optional[Persona] = None,
    world_info: Sequence[WorldInfoEntry] = (),
    authors_note: Optional[AuthorsNote] = None,
) -> str:
    """
    Build a text-completion prompt.

    Order: system prompt, example dialogue, world info (before), history
    with depth injections, world info (after), the new user turn, and a
    bare output sequence for the model to continue from.

    `world_info` must already be the activated, order-sorted entries.
    Without a usable template a plain "Name: content" transcript is built.
    """
    persona = persona or Persona()
    if template is None or not template.input_sequence.strip():
        return build_simple_prompt(history, new_message, character, system_prompt, persona)

    def sub(text: str) -> str:
        return substitute(text, character, persona)

    parts = []

    if system_prompt.strip():
        parts.append(template.system_sequence + sub(system_prompt) + _close(template.system_suffix, template))

    if character.message_example.strip():
        for is_user, content in parse_message_examples(character.message_example, character, persona):
            if is_user:
                parts.append(template.input_sequence + sub(content) + _close(template.input_suffix, template))
            else:
                parts.append(template.output_sequence + sub(content) + _close(template.output_suffix, template))

    before = "\n".join(e.content for e in world_info if e.position == "before_char" and e.content.strip())
    parts.append(_wrap_system(sub(before), template))

    injections = _depth_injections(len(history), character, persona, world_info, authors_note)
    first_assistant = True
    for index, message in enumerate(history):
        for role, text in injections.get(index, []):
            parts.append(_wrap_injection(role, sub(text), template))
        if message.is_user:
            parts.append(template.input_sequence + sub(message.displayed_content) + _close(template.input_suffix, template))
        else:
            prefix = template.output_sequence
            if first_assistant and template.first_output_sequence.strip():
                prefix = template.first_output_sequence
            first_assistant = False
            parts.append(prefix + message.displayed_content + _close(template.output_suffix, template))
    for role, text in injections.get(len(history), []):
        parts.append(_wrap_injection(role, sub(text), template))

    after = "\n".join(e.content for e in world_info if e.position == "after_char" and e.content.strip())
    parts.append(_wrap_system(sub(after), template))

    parts.append(template.input_sequence + sub(new_message) + _close(template.input_suffix, template))
    parts.append(template.last_output_sequence or template.output_sequence)

    return "".join(parts)


def build_simple_prompt(
    history: Sequence[ChatMessage],
    new_message: str,
    character: Character,
    system_prompt: str = "",
    persona: Optional[Persona] = None,
) -> str:
    """Plain transcript used when no instruct template is configured."""
    persona = persona or Persona()
    lines = []
    if system_prompt.strip():
        lines.append(substitute(system_prompt, character, persona) + "\n\n")
    for message in history:
        name = persona.name if message.is_user else character.name
        lines.append(f"{name}: {message.displayed_content}\n")
    lines.append(f"{persona.name}: {substitute(new_message, character, persona)}\n")
    lines.append(f"{character.name}:")
    return "".join(lines)


def instruct_stop_strings(
    template: Optional[InstructTemplate],
    character_name: str,
    user_name: str,
) -> list[str]:
    """Stop strings for a text-completion request, deduplicated in order."""
    candidates = []
    if template is not None:
        candidates.extend(s for s in [template.stop_sequence, template.input_sequence] if s.strip())
    candidates.extend([
        f"\n{character_name}:",
        f"\n\n{character_name}:",
        f"\n{user_name}:",
        f"\n\n{user_name}:",
        f"{user_name}:",
        "\nUser:",
        "\n\nUser:",
        "\n\n\n",
    ])
    return list(dict.fromkeys(candidates))
