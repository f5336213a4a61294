"""Helpers giving tool handlers access to shared server state."""

from __future__ import annotations

import logging

from fastmcp import Context
from fastmcp.server.auth.auth import AccessToken
from fastmcp.server.dependencies import get_access_token

from google_calendar_mcp.servers.context import MainAppContext

logger = logging.getLogger("google-calendar-mcp.servers.dependencies")


def get_app_context(ctx: Context) -> MainAppContext:
    """
    Return the MainAppContext created by the server lifespan.

    Raises:
        ValueError: If the lifespan context is unavailable.
    """
    lifespan_ctx_dict = ctx.request_context.lifespan_context  # type: ignore
    app_lifespan_ctx: MainAppContext | None = (
        lifespan_ctx_dict.get("app_lifespan_context")
        if isinstance(lifespan_ctx_dict, dict)
        else None
    )
    if app_lifespan_ctx is None:
        raise ValueError("Application context is not available from lifespan context.")
    return app_lifespan_ctx


def get_request_auth_info() -> AccessToken | None:
    """Return the MCP access token that authenticated the current request."""
    auth_info = get_access_token()
    if auth_info is None:
        logger.debug("No MCP auth info on request (stdio or OAuth disabled)")
    return auth_info
