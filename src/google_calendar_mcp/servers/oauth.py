"""MCP SDK wiring for the embedded OAuth 2.0 authorization server.

The protocol surface (RFC 8414 / RFC 9728 metadata, ``/register``,
``/authorize``, ``/token``, ``/revoke``, client authentication, PKCE and the
bearer check on the MCP endpoint) is served by FastMCP and the MCP SDK
handlers.  :class:`CalendarOAuthProvider` adapts them to
``McpOAuthService``; the only endpoint of our own is the Google redirect
target registered by :func:`register_callback_route`.

SECURITY NOTE
-------------
• No raw secrets (codes, access / refresh tokens, client secrets) are ever
  logged.
• The SDK handlers compare the ``code_verifier`` and the ``redirect_uri``
  against the values returned by ``load_authorization_code`` before the code
  is consumed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastmcp.server.auth import OAuthProvider
from fastmcp.server.auth.auth import AccessToken
from mcp.server.auth.provider import (
    AuthorizationCode,
    AuthorizationParams,
    AuthorizeError,
    RefreshToken,
    TokenError,
)
from mcp.server.auth.settings import ClientRegistrationOptions, RevocationOptions
from mcp.shared.auth import OAuthClientInformationFull, OAuthToken
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response

from google_calendar_mcp.config import ServerConfig
from google_calendar_mcp.mcp_oauth.errors import (
    CredentialsError,
    InvalidGrantError,
    InvalidTokenError,
)
from google_calendar_mcp.mcp_oauth.service import McpOAuthService
from google_calendar_mcp.mcp_oauth.state import parse_auth_state
from google_calendar_mcp.utils.logging import mask_sensitive

if TYPE_CHECKING:  # pragma: no cover
    from google_calendar_mcp.servers.main import CalendarMCP  # circular – only for typing

_LOG = logging.getLogger("google-calendar-mcp.oauth.routes")

_ISSUED_FIELDS = ("client_id", "client_secret", "client_id_issued_at", "client_secret_expires_at")


class CalendarOAuthProvider(OAuthProvider):
    """FastMCP ``OAuthProvider`` backed by :class:`McpOAuthService`.

    ``authorize`` answers with Google's consent URL instead of a local code;
    the code reaches the client later, from the ``/oauth2callback`` route.
    """

    def __init__(self, service: McpOAuthService, *, base_url: str) -> None:
        super().__init__(
            base_url=base_url,
            client_registration_options=ClientRegistrationOptions(enabled=True),
            revocation_options=RevocationOptions(enabled=True),
        )
        self.service = service

    # ----- clients --------------------------------------------------------- #
    async def get_client(self, client_id: str) -> OAuthClientInformationFull | None:
        return self.service.clients.get_client(client_id)

    async def register_client(self, client_info: OAuthClientInformationFull) -> None:
        """Store *client_info* under identifiers issued by the registry.

        The SDK registration handler answers with the object it passed in,
        so the registry's ``client_id`` and secret are copied onto it.
        """
        registered = self.service.clients.register_client(client_info)
        for name in _ISSUED_FIELDS:
            setattr(client_info, name, getattr(registered, name))

    # ----- authorization --------------------------------------------------- #
    async def authorize(
        self, client: OAuthClientInformationFull, params: AuthorizationParams
    ) -> str:
        try:
            return self.service.authorize(client, params)
        except CredentialsError as exc:
            _LOG.error("Cannot start Google authorization: %s", exc)
            raise AuthorizeError(
                error="server_error",
                error_description="Google OAuth credentials are not configured",
            ) from exc

    async def load_authorization_code(
        self, client: OAuthClientInformationFull, authorization_code: str
    ) -> AuthorizationCode | None:
        return self.service.load_authorization_code(client, authorization_code)

    async def exchange_authorization_code(
        self, client: OAuthClientInformationFull, authorization_code: AuthorizationCode
    ) -> OAuthToken:
        try:
            return self.service.exchange_authorization_code(client, authorization_code.code)
        except InvalidGrantError as exc:
            raise TokenError(error=exc.error, error_description=str(exc)) from exc

    # ----- refresh / access tokens ----------------------------------------- #
    async def load_refresh_token(
        self, client: OAuthClientInformationFull, refresh_token: str
    ) -> RefreshToken | None:
        return self.service.load_refresh_token(client, refresh_token)

    async def exchange_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: RefreshToken,
        scopes: list[str],
    ) -> OAuthToken:
        try:
            return self.service.exchange_refresh_token(client, refresh_token.token, scopes)
        except InvalidGrantError as exc:
            raise TokenError(error=exc.error, error_description=str(exc)) from exc

    async def load_access_token(self, token: str) -> AccessToken | None:
        try:
            info = self.service.verify_access_token(token)
        except InvalidTokenError:
            _LOG.info("Rejected MCP request with token %s", mask_sensitive(token, 7))
            return None
        return AccessToken(
            token=info.token,
            client_id=info.client_id,
            scopes=list(info.scopes),
            expires_at=info.expires_at,
        )

    async def revoke_token(self, token: AccessToken | RefreshToken) -> None:
        # the SDK only gets here for tokens owned by the authenticated client
        hint = "refresh_token" if isinstance(token, RefreshToken) else "access_token"
        self.service.revoke_token(token.client_id, token.token, hint)
        _LOG.info("Revoked %s %s", hint, mask_sensitive(token.token, 7))


def _html_page(title: str, body: str, status: int = 200) -> HTMLResponse:
    """Return a tiny success / error HTML page."""
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{title}</title></head><body><h1>{title}</h1><p>{body}</p></body></html>"
    )
    return HTMLResponse(content, status_code=status)


def register_callback_route(
    app: "CalendarMCP", service: McpOAuthService, config: ServerConfig
) -> None:
    """Attach the Google redirect target (``/oauth2callback`` by default)."""

    @app.custom_route(config.callback_path, methods=["GET"])
    async def _oauth_callback(request: Request) -> Response:  # noqa: D401
        # provider-side errors first (access_denied, invalid_scope, …)
        oauth_error = request.query_params.get("error")
        if oauth_error:
            description = request.query_params.get("error_description", "")
            return _html_page(
                "Authorization error",
                f"{oauth_error}: {description}" if description else oauth_error,
                400,
            )

        code = request.query_params.get("code")
        state = request.query_params.get("state")
        if not code or not state:
            return _html_page("Missing parameters", "code or state missing", 400)

        auth_state = parse_auth_state(state)
        if auth_state is None:
            return _html_page("Authorization error", "Unrecognised state parameter", 400)

        result = await service.complete_external_auth(
            code, auth_state.session_id, auth_state.account
        )
        _LOG.info(
            "Google callback handled status=%s correlation_id=%s",
            result.status_code,
            getattr(request.state, "correlation_id", "-"),
        )
        if result.is_redirect:
            return RedirectResponse(result.location, status_code=result.status_code)
        return PlainTextResponse(result.message or "", status_code=result.status_code)
