"""Embedded OAuth 2.0 authorization server for MCP clients.

This namespace hosts the **HTTP-agnostic** building blocks that let MCP
clients authorize against this server while the server itself authorizes
against Google.

Sub-modules
-----------
state
    Encoding of the Google ``state`` parameter that links back to a session.
models
    Immutable dataclasses for sessions, codes, tokens and timings, plus the
    injectable clock.
errors
    RFC 6749 error types plus upstream / credentials errors.
store
    Atomic JSON snapshots.
worker
    Background timers, cancelled as a unit on shutdown.
tokens
    The token ledger (codes, access and refresh tokens).
clients
    Dynamic client registration storage.
upstream
    Google OAuth client (httpx).
accounts
    Per-account Google token storage.
service
    The orchestrator tying everything together.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .accounts import AccountCredentialSink, FileAccountCredentials  # noqa: F401
from .clients import ClientRegistry  # noqa: F401
from .errors import (  # noqa: F401
    CredentialsError,
    InvalidGrantError,
    InvalidTokenError,
    OAuthError,
    UpstreamError,
)
from .log_utils import get_auth_logger  # noqa: F401
from .models import (  # noqa: F401
    AccessTokenRecord,
    AuthInfo,
    AuthorizationCodeRecord,
    CallbackResult,
    Clock,
    OAuthTimings,
    PendingAuthSession,
    RefreshTokenRecord,
    system_clock,
)
from .service import McpOAuthService  # noqa: F401
from .state import AuthState, build_auth_state, parse_auth_state  # noqa: F401
from .store import JsonFileSnapshot, SnapshotStore  # noqa: F401
from .tokens import TokenLedger  # noqa: F401
from .upstream import GoogleOAuthClient, UpstreamOAuthClient, load_google_credentials  # noqa: F401
from .worker import BackgroundWorker  # noqa: F401

__all__ = [
    # accounts
    "AccountCredentialSink",
    "FileAccountCredentials",
    # clients
    "ClientRegistry",
    # errors
    "CredentialsError",
    "InvalidGrantError",
    "InvalidTokenError",
    "OAuthError",
    "UpstreamError",
    # logging helpers
    "get_auth_logger",
    # models
    "AccessTokenRecord",
    "AuthInfo",
    "AuthorizationCodeRecord",
    "CallbackResult",
    "Clock",
    "OAuthTimings",
    "PendingAuthSession",
    "RefreshTokenRecord",
    "system_clock",
    # service
    "McpOAuthService",
    # state
    "AuthState",
    "build_auth_state",
    "parse_auth_state",
    # persistence
    "JsonFileSnapshot",
    "SnapshotStore",
    "TokenLedger",
    # upstream
    "GoogleOAuthClient",
    "UpstreamOAuthClient",
    "load_google_credentials",
    # timers
    "BackgroundWorker",
]
