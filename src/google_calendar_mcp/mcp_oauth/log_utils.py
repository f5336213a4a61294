"""Structured logging helpers for MCP OAuth components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``session_id``     – Pending session identifier (first 6 chars kept)
- ``client_id``      – Registered MCP client identifier (public)
- ``account``        – Google account id the flow writes to
- ``correlation_id`` – Request correlation id from the HTTP layer

Authorization codes, tokens and client secrets are never accepted here.

Usage
-----
>>> from google_calendar_mcp.mcp_oauth.log_utils import get_auth_logger
>>> log = get_auth_logger(
...     base_logger_name="google-calendar-mcp.mcp_oauth.service",
...     session_id="123e4567-e89b-12d3-a456-426614174000",
...     client_id="0b7c…",
... )
>>> log.info("Completing MCP auth")
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted auth context into log records."""

    extra_keys = ("session_id", "client_id", "account", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k == "session_id":
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # call-site extras win
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "google-calendar-mcp.mcp_oauth",
    session_id: str | None = None,
    client_id: str | None = None,
    account: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthLoggerAdapter(
        logger,
        {
            "session_id": session_id,
            "client_id": client_id,
            "account": account,
            "correlation_id": correlation_id,
        },
    )
