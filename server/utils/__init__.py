"""
Utils package initialization.
"""
from .file_helper import save_json, load_json, list_json_files, generate_id
from .logging_config import logger, get_logger, setup_logging

__all__ = [
    "save_json",
    "load_json",
    "list_json_files",
    "generate_id",
    # Logging
    "logger",
    "get_logger",
    "setup_logging",
]
