"""Utility functions related to environment checking."""

import logging
import os
from typing import Final, Tuple

logger = logging.getLogger("google-calendar-mcp.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")
_FALSY: Final[Tuple[str, ...]] = ("false", "0", "no", "n", "off")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def env_flag(name: str, default: bool = False) -> bool:
    """
    Read a boolean environment variable.

    Unset or empty values yield *default*; unrecognised values are logged and
    also yield *default*.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    if _truthy(raw):
        return True
    if raw.strip().lower() in _FALSY:
        return False
    logger.warning("Ignoring unrecognised boolean value for %s", name)
    return default


def env_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back to *default*."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-integer value for %s", name)
        return default


def env_str(name: str, default: str | None = None) -> str | None:
    """Read a string environment variable; blank values count as unset."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()
