"""Typed, immutable records used by the MCP OAuth server.

Ledger records serialise to plain dicts for the JSON snapshot; timestamps are
whole UNIX seconds taken from an injected :data:`Clock`.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

Clock = Callable[[], float]
"""Zero-argument callable returning seconds since the epoch."""

system_clock: Clock = time.time


def epoch_seconds(clock: Clock) -> int:
    """Read *clock* truncated to the whole seconds stored in records."""
    return int(clock())


@dataclass(frozen=True, slots=True)
class PendingAuthSession:
    """An in-flight authorization waiting for the Google callback."""

    session_id: str
    client_id: str
    code_challenge: str
    redirect_uri: str
    created_at: int
    state: str | None = None
    # the token request must repeat redirect_uri when /authorize named it
    redirect_uri_provided_explicitly: bool = True


@dataclass(frozen=True, slots=True)
class AuthorizationCodeRecord:
    """Single-use proof that a session completed upstream authentication."""

    code: str
    client_id: str
    code_challenge: str
    redirect_uri: str
    session_id: str
    expires_at: int
    redirect_uri_provided_explicitly: bool = True

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthorizationCodeRecord":
        return cls(
            code=str(data["code"]),
            client_id=str(data["client_id"]),
            code_challenge=str(data["code_challenge"]),
            redirect_uri=str(data["redirect_uri"]),
            session_id=str(data.get("session_id", "")),
            expires_at=int(data["expires_at"]),
            redirect_uri_provided_explicitly=bool(
                data.get("redirect_uri_provided_explicitly", True)
            ),
        )


@dataclass(frozen=True, slots=True)
class AccessTokenRecord:
    """Bearer credential for MCP requests."""

    token: str
    client_id: str
    expires_at: int
    scopes: tuple[str, ...] = ()
    # refresh token this access token was minted from, for cascading revoke
    refresh_token: str | None = None

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["scopes"] = list(self.scopes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccessTokenRecord":
        return cls(
            token=str(data["token"]),
            client_id=str(data["client_id"]),
            expires_at=int(data["expires_at"]),
            scopes=tuple(data.get("scopes") or ()),
            refresh_token=data.get("refresh_token"),
        )


@dataclass(frozen=True, slots=True)
class RefreshTokenRecord:
    """Long-lived credential that mints access tokens."""

    token: str
    client_id: str
    expires_at: int
    scopes: tuple[str, ...] = ()

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["scopes"] = list(self.scopes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefreshTokenRecord":
        return cls(
            token=str(data["token"]),
            client_id=str(data["client_id"]),
            expires_at=int(data["expires_at"]),
            scopes=tuple(data.get("scopes") or ()),
        )


@dataclass(frozen=True, slots=True)
class AuthInfo:
    """Identity attached to a request after bearer verification."""

    token: str
    client_id: str
    expires_at: int
    scopes: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class CallbackResult:
    """Outcome of the upstream callback, rendered by the HTTP layer.

    Exactly one of ``location`` (redirect) or ``message`` (plain response)
    is set.
    """

    status_code: int
    location: str | None = None
    message: str | None = None

    @property
    def is_redirect(self) -> bool:
        return self.location is not None


@dataclass(frozen=True, slots=True)
class OAuthTimings:
    """Lifetimes and timer intervals, in seconds."""

    auth_code_ttl: int = 10 * 60
    access_token_ttl: int = 60 * 60
    refresh_token_ttl: int = 30 * 24 * 60 * 60
    session_ttl: int = 15 * 60
    sweep_interval: float = 5 * 60
    persist_debounce: float = 0.5
