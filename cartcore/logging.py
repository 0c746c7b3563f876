"""
Centralized logging configuration for the cart core.

Usage:
    from cartcore.logging import get_logger
    logger = get_logger(__name__)

    logger.info("Cart saved")
    logger.error("Backend call failed", exc_info=True)
"""

import logging
import os
import sys
from functools import cache

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMAT_SIMPLE = "%(levelname)s - %(name)s - %(message)s"

# Client libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp", "urllib3")


def _get_log_level() -> int:
    """Get log level from environment or default to INFO."""
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _is_production() -> bool:
    return os.environ.get("ENVIRONMENT", "development").lower() == "production"


def configure_logging(force: bool = False) -> None:
    """Attach a stdout handler to the root logger.

    Does nothing when the host process already configured handlers,
    unless ``force`` is set.
    """
    root = logging.getLogger()
    if root.handlers and not force:
        return

    for handler in list(root.handlers):
        root.removeHandler(handler)

    level = _get_log_level()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE if _is_production() else LOG_FORMAT))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


configure_logging()


@cache
def get_logger(name: str) -> logging.Logger:
    """Get or create a logger with the given name (typically ``__name__``)."""
    return logging.getLogger(name)


def _escape_log_injection(value: str) -> str:
    # CWE-117: keep one record per line
    return (
        value.replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x00", "")
    )


def sanitize_id_for_logging(id_value: str | None, max_length: int = 36) -> str:
    """
    Make a user-supplied identifier safe to log.

    Cart and guest ids come straight from clients, so control characters are
    escaped and the value is truncated.

    Args:
        id_value: Identifier to sanitize (can be None)
        max_length: Maximum number of characters to keep

    Returns:
        Sanitized id or "N/A" if empty
    """
    if not id_value:
        return "N/A"
    safe_value = _escape_log_injection(str(id_value))
    if len(safe_value) <= max_length:
        return safe_value
    return safe_value[:max_length] + "..."


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_SIMPLE",
    "configure_logging",
    "get_logger",
    "sanitize_id_for_logging",
]
