"""
Prompt assembly services.
"""
from .macros import substitute
from .world_info import build_scan_window, scan_world_info, activate_world_info
from .instruct import (
    build_instruct_prompt,
    build_simple_prompt,
    compose_system_prompt,
    instruct_stop_strings,
)
from .chat_completion import build_chat_messages, chat_stop_strings

__all__ = [
    "substitute",
    "build_scan_window",
    "scan_world_info",
    "activate_world_info",
    "build_instruct_prompt",
    "build_simple_prompt",
    "compose_system_prompt",
    "instruct_stop_strings",
    "build_chat_messages",
    "chat_stop_strings",
]
