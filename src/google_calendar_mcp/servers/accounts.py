"""Account tools: which Google accounts this server holds credentials for."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from cachetools import TTLCache
from fastmcp import Context

from google_calendar_mcp.mcp_oauth.models import Clock, system_clock
from google_calendar_mcp.servers.dependencies import get_app_context, get_request_auth_info

if TYPE_CHECKING:  # pragma: no cover
    from google_calendar_mcp.mcp_oauth.accounts import FileAccountCredentials
    from google_calendar_mcp.servers.main import CalendarMCP

logger = logging.getLogger("google-calendar-mcp.servers.accounts")

SUMMARY_TTL_SECONDS = 300


def describe_accounts(accounts: FileAccountCredentials) -> list[dict[str, Any]]:
    """Summarise stored accounts without exposing any token values."""
    summary = []
    for account_id, entry in sorted(accounts.load_all().items()):
        if not isinstance(entry, dict):
            continue
        summary.append(
            {
                "account": account_id,
                "email": entry.get("email"),
                "has_refresh_token": bool(entry.get("refresh_token")),
                "active": account_id == accounts.get_active_account(),
            }
        )
    return summary


class AccountSummaryCache:
    """Caches :func:`describe_accounts` between Google credential writes.

    :meth:`invalidate` is registered as a credential hook on the OAuth
    service, so a completed authorization shows up on the next call.
    """

    def __init__(
        self,
        accounts: FileAccountCredentials,
        *,
        ttl: float = SUMMARY_TTL_SECONDS,
        clock: Clock = system_clock,
    ) -> None:
        self._accounts = accounts
        self._cache: TTLCache[str, list[dict[str, Any]]] = TTLCache(
            maxsize=1, ttl=ttl, timer=clock
        )

    def summary(self) -> list[dict[str, Any]]:
        cached = self._cache.get("accounts")
        if cached is None:
            cached = describe_accounts(self._accounts)
            self._cache["accounts"] = cached
        return cached

    def invalidate(self) -> None:
        self._cache.clear()
        logger.debug("Account summary cache cleared")


def register_account_tools(app: "CalendarMCP") -> None:
    @app.tool(tags={"accounts", "read"})
    async def list_accounts(ctx: Context) -> str:
        """List the Google accounts connected to this server.

        Returns:
            JSON string with one entry per account (id, email, whether a
            refresh token is stored) and the MCP client making the call.
        """
        app_ctx = get_app_context(ctx)
        auth_info = get_request_auth_info()
        result = {
            "accounts": app_ctx.account_summaries.summary(),
            "mcp_client_id": auth_info.client_id if auth_info else None,
        }
        return json.dumps(result, indent=2, ensure_ascii=False)
