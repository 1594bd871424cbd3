"""
World info (lorebook) activation.
"""
import re
from typing import Iterable, Sequence

from models import Character, ChatMessage, WorldInfoEntry, WorldInfoSettings
from utils import get_logger

logger = get_logger("prompt.world_info")


def build_scan_window(
    new_message: str,
    history: Sequence[ChatMessage],
    character: Character,
    depth: int = 2,
) -> str:
    """
    Build the lower-cased text that lore keys are matched against.

    The window is the outgoing message, the last `depth` history messages,
    the character description and the character scenario.
    """
    recent = list(history[-depth:]) if depth > 0 else []
    parts = [new_message]
    parts.extend(m.displayed_content for m in recent)
    parts.append(character.description)
    parts.append(character.scenario)
    return " ".join(parts).lower()


def _key_matches(key: str, text: str, case_sensitive: bool, whole_word: bool) -> bool:
    if not key.strip():
        return False
    flags = 0 if case_sensitive else re.IGNORECASE
    if whole_word:
        return re.search(r"\b" + re.escape(key) + r"\b", text, flags) is not None
    if case_sensitive:
        return key in text
    return key.lower() in text.lower()


def entry_matches(entry: WorldInfoEntry, scan_text: str) -> bool:
    """Check whether a single entry activates against the scan text."""
    if not entry.enabled:
        return False
    if entry.constant:
        return True

    primary = any(
        _key_matches(key, scan_text, entry.case_sensitive, entry.match_whole_words)
        for key in entry.key
    )
    if not primary:
        return False

    # Selective entries also need one of their secondary keys
    secondary = [k for k in entry.secondary_key if k.strip()]
    if entry.selective and secondary:
        return any(_key_matches(k, scan_text, entry.case_sensitive, False) for k in secondary)
    return True


def scan_world_info(entries: Iterable[WorldInfoEntry], scan_text: str) -> list[WorldInfoEntry]:
    """
    Return the activated entries sorted ascending by order.

    Ties keep their original relative order. Pure: the result only depends
    on the entries and the scan text.
    """
    triggered = [entry for entry in entries if entry_matches(entry, scan_text)]
    return sorted(triggered, key=lambda e: e.order)


def activate_world_info(
    entries: Sequence[WorldInfoEntry],
    new_message: str,
    history: Sequence[ChatMessage],
    character: Character,
    settings: WorldInfoSettings,
) -> list[WorldInfoEntry]:
    """Build the scan window from settings and scan entries against it."""
    if not entries:
        return []
    scan_text = build_scan_window(new_message, history, character, settings.depth)
    triggered = scan_world_info(entries, scan_text)
    logger.debug(
        "World info: %d of %d entries triggered (scan depth %d)",
        len(triggered), len(entries), settings.depth
    )
    return triggered
