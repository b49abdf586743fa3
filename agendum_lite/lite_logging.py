"""
Central logging configuration for agendum_lite.

Keeps the agendum_lite loggers at INFO (DEBUG when troubleshooting) while
holding chatty third-party libraries at WARNING.
"""

import logging
import os
from typing import Optional

NOISY_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
}

LITE_MODULES = [
    "agendum_lite",
    "agendum_lite.calendar",
    "agendum_lite.domain",
    "agendum_lite.sync",
]

_TRUTHY = ("1", "true", "yes")
_ROOT_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR")
_FALLBACK_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s - %(message)s"


def _debug_requested(debug_mode: bool, force_debug: Optional[bool]) -> bool:
    if force_debug is not None:
        return force_debug
    return debug_mode or os.getenv("AGENDUM_DEBUG", "").lower() in _TRUTHY


def _root_level(debug: bool) -> int:
    override = os.getenv("AGENDUM_LOG_LEVEL", "").upper()
    if override in _ROOT_LEVEL_NAMES:
        return logging.getLevelName(override)
    return logging.DEBUG if debug else logging.INFO


def configure_lite_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for agendum_lite.

    Args:
        debug_mode: Whether to enable debug logging for agendum_lite modules
        force_debug: Wins over both ``debug_mode`` and AGENDUM_DEBUG when not None

    Environment Variables:
        AGENDUM_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        AGENDUM_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    debug = _debug_requested(debug_mode, force_debug)
    root_level = _root_level(debug)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    # _init_logging normally installed the colorized handler already
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(logging.Formatter(_FALLBACK_FORMAT))
        root_logger.addHandler(handler)

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    lite_level = logging.DEBUG if debug else logging.INFO
    for name in LITE_MODULES:
        logging.getLogger(name).setLevel(lite_level)

    if debug:
        root_logger.info("Debug logging enabled for agendum_lite modules")
    else:
        root_logger.debug("Production logging levels applied")


def reset_logging_to_debug() -> None:
    """Put every known logger, third-party ones included, at DEBUG."""
    for name in ["", *NOISY_LOGGERS, *LITE_MODULES]:
        logging.getLogger(name).setLevel(logging.DEBUG)
    logging.getLogger().info("All loggers reset to DEBUG level for troubleshooting")


def get_logging_status() -> dict[str, str]:
    """Level names of the root, agendum_lite and main third-party loggers."""
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for name in ("agendum_lite", "httpx", "httpcore", "asyncio"):
        status[name] = logging.getLevelName(logging.getLogger(name).level)
    return status
