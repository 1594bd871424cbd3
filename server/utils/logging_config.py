"""
Logging for PocketTavern.

One "pockettavern" logger with a console handler and a size-rotated file
under data_dir. Modules log through children obtained from get_logger().
"""
import logging
import sys
from logging.handlers import RotatingFileHandler

from config import settings

ROOT_LOGGER = "pockettavern"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"

# Held at WARNING; they log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(
    name: str = ROOT_LOGGER,
    log_file: str = "pockettavern.log",
    console_level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3
) -> logging.Logger:
    """
    Attach console and rotating file handlers to the application logger.

    The file always records DEBUG; the console shows DEBUG only when
    settings.debug is on. Safe to call more than once.

    Args:
        name: Logger name
        log_file: File name under settings.data_dir
        console_level: Console threshold outside debug mode
        max_bytes: Rotate after this many bytes
        backup_count: Rotated files kept

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if settings.debug else console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(console)

    try:
        rotating = RotatingFileHandler(
            settings.data_dir / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning("File logging disabled: %s", e)
    else:
        rotating.setLevel(logging.DEBUG)
        rotating.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(rotating)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


logger = setup_logging()


def get_logger(name: str) -> logging.Logger:
    """Child of the application logger, e.g. get_logger("llm.stream")."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
