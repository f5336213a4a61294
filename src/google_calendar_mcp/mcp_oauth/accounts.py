"""Google account credential storage used by the MCP flow.

Google tokens obtained during an MCP authorization are stored per *account id*
so that Calendar tools can act on behalf of that account.  The token file
holds one entry per account::

    {
      "normal": {"access_token": "...", "refresh_token": "...",
                 "expiry_date": 1700000000000, "email": "me@example.com"},
      "work":   {...}
    }

The sink writes to whichever account is *active*; the orchestrator switches
the active account around a write and restores it afterwards.  All methods
are synchronous so that the switch is never observed by another coroutine.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Final, Mapping, Protocol, runtime_checkable

from google_calendar_mcp.mcp_oauth.store import _atomic_write

_LOG = logging.getLogger("google-calendar-mcp.mcp_oauth.accounts")

ACCOUNT_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9_-]{1,64}$")
DEFAULT_ACCOUNT: Final[str] = "normal"
TOKENS_FILENAME: Final[str] = "tokens.json"


def validate_account_id(account_id: str) -> str:
    """Return *account_id* unchanged or raise :class:`ValueError`."""
    if not ACCOUNT_ID_RE.match(account_id or ""):
        raise ValueError(
            "account id must be 1-64 characters of lowercase letters, digits, '-' or '_'"
        )
    return account_id


@runtime_checkable
class AccountCredentialSink(Protocol):
    def get_active_account(self) -> str: ...
    def set_active_account(self, account_id: str) -> None: ...
    def persist_tokens(self, tokens: Mapping[str, Any], email: str | None = None) -> None: ...


class FileAccountCredentials(AccountCredentialSink):
    """JSON-file implementation of :class:`AccountCredentialSink`."""

    def __init__(self, path: str | os.PathLike, *, account: str = DEFAULT_ACCOUNT) -> None:
        self.path = Path(path).expanduser()
        self._active = validate_account_id(account)

    def get_active_account(self) -> str:
        return self._active

    def set_active_account(self, account_id: str) -> None:
        self._active = validate_account_id(account_id)

    def load_all(self) -> dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        return data if isinstance(data, dict) else {}

    def get_tokens(self, account_id: str | None = None) -> dict[str, Any] | None:
        entry = self.load_all().get(account_id or self._active)
        return entry if isinstance(entry, dict) else None

    def persist_tokens(self, tokens: Mapping[str, Any], email: str | None = None) -> None:
        """Store *tokens* for the active account.

        A refresh token already on file is kept when Google omits one.
        I/O errors propagate.
        """
        data = self.load_all()
        previous = data.get(self._active) if isinstance(data.get(self._active), dict) else {}
        entry = {k: v for k, v in tokens.items() if v is not None}
        if "refresh_token" not in entry and previous.get("refresh_token"):
            entry["refresh_token"] = previous["refresh_token"]
        if email:
            entry["email"] = email
        elif previous.get("email"):
            entry["email"] = previous["email"]
        data[self._active] = entry
        _atomic_write(self.path, data)
        _LOG.info("Saved Google tokens for account %s", self._active)
