"""Unit tests for the Google state blob linking a callback to its session."""

from __future__ import annotations

import base64
import json

import pytest

from google_calendar_mcp.mcp_oauth.state import (
    MCP_AUTH_STATE_TYPE,
    build_auth_state,
    parse_auth_state,
)


def test_build_auth_state_is_base64url_json() -> None:
    state = build_auth_state("session-1", "work")
    assert "=" not in state
    padded = state + "=" * (-len(state) % 4)
    decoded = json.loads(base64.urlsafe_b64decode(padded))
    assert decoded == {"type": MCP_AUTH_STATE_TYPE, "sessionId": "session-1", "account": "work"}

    parsed = parse_auth_state(state)
    assert parsed is not None
    assert (parsed.session_id, parsed.account) == ("session-1", "work")


def _encode(obj: object) -> str:
    raw = json.dumps(obj).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


@pytest.mark.parametrize(
    "state",
    [
        None,
        "",
        "not base64 at all!!",
        _encode(["mcp_auth"]),
        _encode({"type": "cli_auth", "sessionId": "s"}),
        _encode({"type": "mcp_auth"}),
        _encode({"type": "mcp_auth", "sessionId": ""}),
        base64.urlsafe_b64encode(b"\xff\xfe").decode(),
    ],
)
def test_parse_auth_state_returns_none_for_foreign_values(state) -> None:
    assert parse_auth_state(state) is None


def test_parse_auth_state_defaults_missing_account() -> None:
    parsed = parse_auth_state(_encode({"type": "mcp_auth", "sessionId": "abc"}))
    assert parsed is not None
    assert parsed.account == "normal"
