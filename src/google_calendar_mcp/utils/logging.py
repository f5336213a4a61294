"""Logging utilities for google-calendar-mcp."""

from __future__ import annotations

import logging
import sys
from typing import TextIO


def setup_logging(level: int = logging.WARNING, stream: TextIO | None = None) -> logging.Logger:
    """
    Configure the root logger for the server.

    Logs go to stderr by default because stdout carries the MCP stdio transport.

    Args:
        level: The logging level to use
        stream: Output stream, defaults to ``sys.stderr``

    Returns:
        The package logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(handler)

    for name in ("google-calendar-mcp", "mcp.server", "mcp.server.lowlevel.server"):
        logging.getLogger(name).setLevel(level)

    return logging.getLogger("google-calendar-mcp")


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """
    Mask a secret for logging, keeping only a short prefix.

    Args:
        value: The token, code or secret to mask
        keep_chars: Number of leading characters left readable

    Returns:
        The masked value, ``"None"`` for missing values
    """
    if not value:
        return "None"
    if len(value) <= keep_chars * 2:
        return "*" * len(value)
    return value[:keep_chars] + "*" * 8
