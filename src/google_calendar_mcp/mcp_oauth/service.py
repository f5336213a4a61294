"""McpOAuthService – the embedded authorization server's orchestrator.

This service encapsulates the *business logic* of the MCP authorization flow.
The MCP SDK handlers reach it through the provider adapter in
``google_calendar_mcp.servers.oauth``; nothing here knows about HTTP.

Flow
----
1. :meth:`McpOAuthService.authorize` stores a *pending session* and returns
   Google's consent URL.  The Google ``state`` carries the session id.
2. Google redirects to ``<issuer>/oauth2callback``;
   :meth:`McpOAuthService.complete_external_auth` consumes the session,
   exchanges the Google code, stores the Google tokens for the account and
   mints a local authorization code for the MCP client.
3. The MCP client exchanges that code (the SDK token handler checks PKCE
   and the redirect URI against :meth:`McpOAuthService.load_authorization_code`)
   via :meth:`McpOAuthService.exchange_authorization_code` and later
   refreshes via :meth:`McpOAuthService.exchange_refresh_token`.
4. Every MCP request is checked with :meth:`McpOAuthService.verify_access_token`.

Pending sessions live in memory only (a :class:`cachetools.TTLCache`); a
restart simply makes in-flight browser flows fail with *invalid session*.

Concurrency
-----------
Session consumption happens before the first ``await`` of the callback, so a
duplicate callback for the same session always finds it gone.  The temporary
switch of the active Google account around the token write is synchronous as
well.
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Sequence

from cachetools import TTLCache
from mcp.server.auth.provider import AuthorizationCode, AuthorizationParams, RefreshToken
from mcp.shared.auth import OAuthClientInformationFull, OAuthToken
from pydantic import AnyUrl

from google_calendar_mcp.mcp_oauth.accounts import AccountCredentialSink
from google_calendar_mcp.mcp_oauth.clients import ClientRegistry
from google_calendar_mcp.mcp_oauth.errors import (
    InvalidGrantError,
    InvalidTokenError,
)
from google_calendar_mcp.mcp_oauth.log_utils import get_auth_logger
from google_calendar_mcp.mcp_oauth.models import (
    AuthInfo,
    AuthorizationCodeRecord,
    CallbackResult,
    Clock,
    OAuthTimings,
    PendingAuthSession,
    epoch_seconds,
    system_clock,
)
from google_calendar_mcp.mcp_oauth.state import build_auth_state
from google_calendar_mcp.mcp_oauth.tokens import TokenFactory, TokenLedger, default_token_factory
from google_calendar_mcp.mcp_oauth.upstream import UpstreamOAuthClient, required_scopes
from google_calendar_mcp.mcp_oauth.worker import BackgroundWorker, Scheduler, TimerHandle
from google_calendar_mcp.utils.urls import append_query

_LOG = logging.getLogger("google-calendar-mcp.mcp_oauth.service")

INVALID_SESSION_MESSAGE = "Invalid or expired MCP auth session"
CALLBACK_FAILED_MESSAGE = "Authentication failed"


class McpOAuthService:
    """Orchestrates MCP client authorization on top of Google OAuth."""

    def __init__(
        self,
        *,
        issuer_url: str,
        clients: ClientRegistry,
        tokens: TokenLedger,
        upstream: UpstreamOAuthClient,
        accounts: AccountCredentialSink,
        scopes: Sequence[str] | None = None,
        account_id: str = "normal",
        callback_path: str = "/oauth2callback",
        clock: Clock = system_clock,
        token_factory: TokenFactory = default_token_factory,
        worker: Scheduler | None = None,
        timings: OAuthTimings | None = None,
        max_pending_sessions: int = 1024,
        credential_hooks: Sequence[Callable[[], None]] = (),
    ) -> None:
        self.issuer_url = issuer_url.rstrip("/")
        self.callback_url = f"{self.issuer_url}{callback_path}"
        self.clients = clients
        self.tokens = tokens
        self._upstream = upstream
        self._accounts = accounts
        self._scopes = tuple(scopes) if scopes else required_scopes()
        self._account_id = account_id
        self._clock = clock
        self._token_factory = token_factory
        self._worker: Scheduler = worker or BackgroundWorker("mcp-oauth.service")
        self.timings = timings or OAuthTimings()
        self._credential_hooks = list(credential_hooks)
        self._sessions: TTLCache[str, PendingAuthSession] = TTLCache(
            maxsize=max_pending_sessions, ttl=self.timings.session_ttl, timer=clock
        )
        self._session_sweep: TimerHandle | None = None

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        """Load persisted state and start background sweeps."""
        self.clients.load()
        self.tokens.start()
        self._session_sweep = self._worker.every(
            self.timings.sweep_interval, self.sweep_sessions
        )
        _LOG.info("MCP OAuth service started (issuer=%s)", self.issuer_url)

    async def shutdown(self) -> None:
        """Cancel timers and flush pending token writes."""
        if self._session_sweep is not None:
            self._session_sweep.cancel()
            self._session_sweep = None
        await self.tokens.shutdown()
        await self._worker.stop()
        _LOG.info("MCP OAuth service stopped")

    def add_credential_hook(self, hook: Callable[[], None]) -> None:
        """Register a callable run after Google credentials change."""
        self._credential_hooks.append(hook)

    # ------------------------------------------------------------------ #
    # Pending sessions                                                   #
    # ------------------------------------------------------------------ #
    def sweep_sessions(self) -> None:
        self._sessions.expire()

    @property
    def pending_session_count(self) -> int:
        self._sessions.expire()
        return len(self._sessions)

    # ------------------------------------------------------------------ #
    # Authorization                                                      #
    # ------------------------------------------------------------------ #
    def authorize(self, client: OAuthClientInformationFull, params: AuthorizationParams) -> str:
        """Start a flow for *client* and return the Google consent URL.

        Parameters
        ----------
        client:
            The registered client (already validated by the HTTP layer).
        params:
            Validated authorization request (redirect URI, PKCE challenge,
            client ``state``).

        Returns
        -------
        str
            URL the user agent must be redirected to.
        """
        session_id = self._token_factory()
        self._sessions[session_id] = PendingAuthSession(
            session_id=session_id,
            client_id=client.client_id,
            code_challenge=params.code_challenge,
            redirect_uri=str(params.redirect_uri),
            state=params.state,
            created_at=epoch_seconds(self._clock),
            redirect_uri_provided_explicitly=params.redirect_uri_provided_explicitly,
        )
        try:
            url = self._upstream.build_consent_url(
                redirect_uri=self.callback_url,
                scopes=self._scopes,
                state=build_auth_state(session_id, self._account_id),
            )
        except Exception:
            self._sessions.pop(session_id, None)
            raise
        get_auth_logger(
            base_logger_name=_LOG.name, session_id=session_id, client_id=client.client_id
        ).info("MCP authorization started session=%s****", session_id[:6])
        return url

    async def complete_external_auth(
        self, upstream_code: str, session_id: str, account_id: str
    ) -> CallbackResult:
        """Finish the Google leg of a flow and hand a local code to the client.

        Returns
        -------
        CallbackResult
            302 to the client's ``redirect_uri`` with ``code`` (or with
            ``error=server_error`` when anything after the session lookup
            fails), 400 for an unknown or expired session, or 500 when even
            the error redirect cannot be built.
        """
        # single-use: removed before any await
        session = self._sessions.pop(session_id, None)
        if session is None:
            _LOG.warning("Callback for unknown or expired session=%s****", session_id[:6])
            return CallbackResult(status_code=400, message=INVALID_SESSION_MESSAGE)

        log = get_auth_logger(
            base_logger_name=_LOG.name,
            session_id=session_id,
            client_id=session.client_id,
            account=account_id,
        )
        try:
            google_tokens = await self._upstream.exchange_code(
                redirect_uri=self.callback_url, code=upstream_code
            )
            email = await self._lookup_email(google_tokens)
            self._persist_for_account(account_id, google_tokens, email)
            for hook in self._credential_hooks:
                hook()
            code = self.tokens.create_auth_code(
                session.client_id,
                session.code_challenge,
                session.redirect_uri,
                session_id,
                redirect_uri_provided_explicitly=session.redirect_uri_provided_explicitly,
            )
            location = append_query(session.redirect_uri, code=code, state=session.state)
        except Exception as exc:  # broad: reported to the client via its redirect_uri
            log.warning("MCP authorization failed: %s", exc)
            try:
                location = append_query(
                    session.redirect_uri,
                    error="server_error",
                    error_description=str(exc) or "Failed to complete authentication",
                    state=session.state,
                )
            except ValueError:
                return CallbackResult(status_code=500, message=CALLBACK_FAILED_MESSAGE)
            return CallbackResult(status_code=302, location=location)

        log.info("MCP authorization completed")
        return CallbackResult(status_code=302, location=location)

    async def _lookup_email(self, google_tokens: Mapping[str, object]) -> str | None:
        access_token = google_tokens.get("access_token")
        if not isinstance(access_token, str):
            return None
        try:
            return await self._upstream.fetch_account_email(access_token)
        except Exception as exc:  # broad: the email is informational only
            _LOG.debug("Could not fetch Google account email: %s", exc)
            return None

    def _persist_for_account(
        self, account_id: str, google_tokens: Mapping[str, object], email: str | None
    ) -> None:
        original = self._accounts.get_active_account()
        try:
            self._accounts.set_active_account(account_id)
            self._accounts.persist_tokens(google_tokens, email)
        finally:
            self._accounts.set_active_account(original)

    # ------------------------------------------------------------------ #
    # Token endpoint                                                     #
    # ------------------------------------------------------------------ #
    def load_authorization_code(
        self, client: OAuthClientInformationFull, code: str
    ) -> AuthorizationCode | None:
        """Return the unconsumed *code* as the SDK token handler expects it.

        Codes owned by another client resolve to ``None`` without being
        touched.
        """
        record = self._owned_auth_code(client, code)
        if record is None:
            return None
        return AuthorizationCode(
            code=record.code,
            client_id=record.client_id,
            scopes=[],
            expires_at=float(record.expires_at),
            code_challenge=record.code_challenge,
            redirect_uri=AnyUrl(record.redirect_uri),
            redirect_uri_provided_explicitly=record.redirect_uri_provided_explicitly,
        )

    def challenge_for_authorization_code(
        self, client: OAuthClientInformationFull, code: str
    ) -> str:
        """Return the PKCE challenge stored with an unconsumed *code*."""
        record = self._owned_auth_code(client, code)
        if record is None:
            raise InvalidGrantError("Invalid or expired authorization code")
        return record.code_challenge

    def _owned_auth_code(
        self, client: OAuthClientInformationFull, code: str
    ) -> AuthorizationCodeRecord | None:
        record = self.tokens.get_auth_code(code)
        if record is None or record.client_id != client.client_id:
            return None
        return record

    def exchange_authorization_code(
        self, client: OAuthClientInformationFull, code: str
    ) -> OAuthToken:
        """Consume *code* and mint a refresh/access token pair.

        A code presented by the wrong client is rejected exactly like an
        unknown one and stays usable by its owner.
        """
        record = self.tokens.consume_auth_code(code, client_id=client.client_id)
        if record is None:
            raise InvalidGrantError("Invalid or expired authorization code")

        refresh = self.tokens.create_refresh_token(client.client_id, [])
        access = self.tokens.create_access_token(client.client_id, [], refresh.token)
        _LOG.info("Issued MCP tokens to client %s", client.client_id)
        return OAuthToken(
            access_token=access.token,
            token_type="Bearer",
            expires_in=self.timings.access_token_ttl,
            refresh_token=refresh.token,
        )

    def load_refresh_token(
        self, client: OAuthClientInformationFull, refresh_token: str
    ) -> RefreshToken | None:
        """Resolve *refresh_token* for the token and revocation endpoints.

        Expired tokens still resolve for their owner so that revoking them
        reaches the access tokens minted from them;
        :meth:`exchange_refresh_token` refuses them.
        """
        if self.tokens.refresh_token_owner(refresh_token) != client.client_id:
            return None
        record = self.tokens.peek_refresh_token(refresh_token)
        return RefreshToken(
            token=refresh_token,
            client_id=client.client_id,
            scopes=list(record.scopes) if record is not None else [],
            expires_at=record.expires_at if record is not None else None,
        )

    def exchange_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: str,
        scopes: Sequence[str] | None = None,
    ) -> OAuthToken:
        """Mint a new access token from *refresh_token* (no rotation)."""
        stored = self.tokens.get_refresh_token(refresh_token)
        if stored is None or stored.client_id != client.client_id:
            raise InvalidGrantError("Invalid or expired refresh token")

        access = self.tokens.create_access_token(client.client_id, stored.scopes, refresh_token)
        return OAuthToken(
            access_token=access.token,
            token_type="Bearer",
            expires_in=self.timings.access_token_ttl,
        )

    def verify_access_token(self, token: str) -> AuthInfo:
        stored = self.tokens.get_access_token(token)
        if stored is None:
            raise InvalidTokenError("Invalid or expired access token")
        return AuthInfo(
            token=stored.token,
            client_id=stored.client_id,
            scopes=stored.scopes,
            expires_at=stored.expires_at,
        )

    def revoke_token(
        self,
        client_id: str,
        token: str,
        token_type_hint: str | None = None,
    ) -> None:
        """Revoke *token* on behalf of *client_id* (RFC 7009).

        Unknown tokens are ignored.  A refresh token revocation cascades to
        the access tokens minted from it, even once the refresh token itself
        has expired.

        Raises
        ------
        InvalidGrantError
            If the token belongs to another client; nothing is revoked.
        """
        if token_type_hint != "refresh_token":
            access = self.tokens.get_access_token(token)
            if access is not None:
                _check_owner(client_id, access.client_id)
                self.tokens.revoke_access_token(token)
                return
            if token_type_hint == "access_token":
                return

        owner = self.tokens.refresh_token_owner(token)
        if owner is None:
            return
        _check_owner(client_id, owner)
        self.tokens.revoke_tokens_by_refresh_token(token)


def _check_owner(client_id: str, owner: str) -> None:
    if owner != client_id:
        raise InvalidGrantError("Token was not issued to this client")
