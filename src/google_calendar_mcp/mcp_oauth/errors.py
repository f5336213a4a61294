"""Exception types raised by the MCP OAuth core.

Only lightweight, **data-carrying** exceptions live here.  Protocol errors
know the RFC 6749 ``error`` code the provider adapter reports to the MCP SDK;
messages never contain token values.
"""

from __future__ import annotations

from typing import ClassVar


class OAuthError(RuntimeError):
    """Base class for protocol errors surfaced to OAuth clients."""

    error: ClassVar[str] = "invalid_request"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.error.replace("_", " ").capitalize())


class InvalidGrantError(OAuthError):
    """Code or refresh token is unknown, expired, or bound to another client."""

    error = "invalid_grant"


class InvalidTokenError(OAuthError):
    """Access token is unknown or expired."""

    error = "invalid_token"


class UpstreamError(RuntimeError):
    """Google rejected a request or could not be reached.

    The message is safe to show to the MCP client; it never contains the
    Google client secret or tokens.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CredentialsError(RuntimeError):
    """Google OAuth client credentials are missing or malformed."""
