from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from google_calendar_mcp.config import ServerConfig
    from google_calendar_mcp.mcp_oauth.accounts import FileAccountCredentials
    from google_calendar_mcp.servers.accounts import AccountSummaryCache


@dataclass(frozen=True)
class MainAppContext:
    """
    Context holding the server configuration, the Google account store and
    its cached summary, created at server startup and shared with tool
    handlers.
    """

    config: ServerConfig
    accounts: FileAccountCredentials
    account_summaries: AccountSummaryCache
    oauth_enabled: bool = False
