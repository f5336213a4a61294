"""State parameter helpers for the upstream (Google) leg of the MCP flow.

The ``state`` sent to Google links the Google callback back to the pending
MCP authorization session.  It is a base64url-encoded JSON object::

    {"type": "mcp_auth", "sessionId": "<uuid>", "account": "<account id>"}

The session id is an unguessable UUID that is consumed exactly once, so no
signature is needed: a forged or replayed state simply finds no session.

The ``/oauth2callback`` route is shared with the CLI account-linking flow,
which uses its own state values.  :func:`parse_auth_state` therefore treats
anything that is not an MCP auth state as *not ours* and returns ``None``
instead of raising.

Logging
-------
Only the (truncated) session id is ever logged.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Final

_LOG = logging.getLogger("google-calendar-mcp.mcp_oauth.state")

MCP_AUTH_STATE_TYPE: Final[str] = "mcp_auth"


@dataclass(frozen=True, slots=True)
class AuthState:
    """Decoded MCP auth state."""

    session_id: str
    account: str


def _b64e(data: str) -> str:
    """Base64-URL encode *without* padding."""
    return base64.urlsafe_b64encode(data.encode("utf-8")).rstrip(b"=").decode("ascii")


def _b64d(data: str) -> str:
    """Decode base64-URL data that may lack padding."""
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len).decode("utf-8")


def build_auth_state(session_id: str, account: str) -> str:
    """Build the Google ``state`` value for an MCP authorization session.

    Parameters
    ----------
    session_id:
        Identifier of the pending session (UUID).
    account:
        Account id under which the Google tokens will be stored.

    Returns
    -------
    str
        URL-safe state value.
    """
    payload = json.dumps(
        {"type": MCP_AUTH_STATE_TYPE, "sessionId": session_id, "account": account},
        separators=(",", ":"),
    )
    _LOG.debug("Built state for session_id=%s****", session_id[:6])
    return _b64e(payload)


def parse_auth_state(state: str | None) -> AuthState | None:
    """Decode a callback ``state``; return ``None`` if it is not an MCP flow.

    Parameters
    ----------
    state:
        Raw ``state`` query parameter from the callback request.

    Returns
    -------
    AuthState | None
        The decoded state, or ``None`` for missing, malformed or foreign
        values.
    """
    if not state:
        return None
    try:
        decoded = json.loads(_b64d(state))
    except (ValueError, binascii.Error):
        return None
    if not isinstance(decoded, dict) or decoded.get("type") != MCP_AUTH_STATE_TYPE:
        return None
    session_id = decoded.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        return None
    account = decoded.get("account")
    if not isinstance(account, str) or not account:
        account = "normal"
    _LOG.debug("Parsed state for session_id=%s****", session_id[:6])
    return AuthState(session_id=session_id, account=account)
