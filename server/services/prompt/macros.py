"""
Placeholder substitution for prompt fragments.
"""
import re
from typing import Optional

from models import Character, Persona


MACRO_PATTERN = re.compile(
    r"\{\{(char|charIfNotGroup|user|description|personality|scenario|mesExamples|system|persona)\}\}",
    re.IGNORECASE,
)


def substitute(text: str, character: Character, persona: Optional[Persona] = None) -> str:
    """
    Replace SillyTavern-style placeholders in text.

    Supported placeholders (case-insensitive):
    - {{char}} / {{charIfNotGroup}} - Character's name
    - {{user}} - Persona name
    - {{description}} / {{personality}} / {{scenario}} - Character fields
    - {{mesExamples}} - Character example dialogue
    - {{system}} - Character's system prompt
    - {{persona}} - Persona description

    Substitution is a single pass: placeholders inside substituted values are
    left as-is, and unknown placeholders pass through unchanged.
    """
    if not text or "{{" not in text:
        return text

    persona = persona or Persona()
    values = {
        "char": character.name,
        "charifnotgroup": character.name,
        "user": persona.name,
        "description": character.description,
        "personality": character.personality,
        "scenario": character.scenario,
        "mesexamples": character.message_example,
        "system": character.system_prompt,
        "persona": persona.description,
    }
    return MACRO_PATTERN.sub(lambda m: values[m.group(1).lower()], text)
