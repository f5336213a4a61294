"""Google as the upstream identity provider.

The MCP server is itself an OAuth client of Google.  This module loads the
Google OAuth client credentials and talks to Google's authorization, token
and tokeninfo endpoints over :mod:`httpx`.

Credentials resolution
----------------------
1. ``GOOGLE_OAUTH_CREDENTIALS`` holding inline JSON (value starts with ``{``)
2. ``GOOGLE_OAUTH_CREDENTIALS`` holding a file path
3. ``gcp-oauth.keys.json`` in the working directory

The JSON may be Google's downloaded format (``{"installed": {...}}`` or
``{"web": {...}}``) or a flat object with ``client_id`` / ``client_secret``.
Credentials are read on every use so that rotated keys take effect without a
restart.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Final, Protocol, Sequence, runtime_checkable
from urllib.parse import urlencode

import httpx

from google_calendar_mcp.mcp_oauth.errors import CredentialsError, UpstreamError
from google_calendar_mcp.mcp_oauth.models import Clock, system_clock

_LOG = logging.getLogger("google-calendar-mcp.mcp_oauth.upstream")

GOOGLE_AUTH_URL: Final[str] = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL: Final[str] = "https://oauth2.googleapis.com/token"
GOOGLE_TOKENINFO_URL: Final[str] = "https://oauth2.googleapis.com/tokeninfo"

CALENDAR_SCOPE: Final[str] = "https://www.googleapis.com/auth/calendar"
TASKS_SCOPE: Final[str] = "https://www.googleapis.com/auth/tasks"

DEFAULT_KEYS_FILE: Final[str] = "gcp-oauth.keys.json"


def required_scopes(enable_tasks: bool = False) -> tuple[str, ...]:
    """Google scopes to request; Tasks only when the feature is on."""
    return (CALENDAR_SCOPE, TASKS_SCOPE) if enable_tasks else (CALENDAR_SCOPE,)


# --------------------------------------------------------------------------- #
# Credentials                                                                 #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class GoogleClientCredentials:
    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"GoogleClientCredentials(client_id={self.client_id!r}, client_secret='****')"


def _parse_credentials(keys: Any) -> GoogleClientCredentials:
    if not isinstance(keys, dict):
        raise CredentialsError("Invalid credentials format: expected a JSON object.")
    block = keys.get("installed") or keys.get("web") or keys
    client_id = block.get("client_id") if isinstance(block, dict) else None
    client_secret = block.get("client_secret") if isinstance(block, dict) else None
    if not client_id or not client_secret:
        raise CredentialsError(
            'Invalid credentials format. Expected an "installed" object or '
            "direct client_id/client_secret fields."
        )
    return GoogleClientCredentials(client_id=str(client_id), client_secret=str(client_secret))


def load_google_credentials(env: dict[str, str] | None = None) -> GoogleClientCredentials:
    """Resolve Google OAuth client credentials.

    Parameters
    ----------
    env:
        Environment mapping; defaults to :data:`os.environ`.

    Raises
    ------
    CredentialsError
        If no usable credentials are found.
    """
    env = os.environ if env is None else env
    source = (env.get("GOOGLE_OAUTH_CREDENTIALS") or "").strip()
    try:
        if source.startswith("{"):
            return _parse_credentials(json.loads(source))
        path = Path(source or DEFAULT_KEYS_FILE).expanduser()
        with path.open("r", encoding="utf-8") as fh:
            return _parse_credentials(json.load(fh))
    except OSError as exc:
        raise CredentialsError(
            f"Cannot read Google OAuth credentials: {exc}. Set GOOGLE_OAUTH_CREDENTIALS "
            "to the path of gcp-oauth.keys.json or to its JSON content."
        ) from None
    except ValueError as exc:
        raise CredentialsError(f"Google OAuth credentials are not valid JSON: {exc}") from None


# --------------------------------------------------------------------------- #
# Upstream client                                                             #
# --------------------------------------------------------------------------- #
@runtime_checkable
class UpstreamOAuthClient(Protocol):
    """What the orchestrator needs from the upstream provider."""

    def build_consent_url(self, *, redirect_uri: str, scopes: Sequence[str], state: str) -> str: ...

    async def exchange_code(self, *, redirect_uri: str, code: str) -> dict[str, Any]: ...

    async def fetch_account_email(self, access_token: str) -> str | None: ...


class GoogleOAuthClient(UpstreamOAuthClient):
    """httpx implementation of :class:`UpstreamOAuthClient` against Google."""

    def __init__(
        self,
        credentials_loader: Callable[[], GoogleClientCredentials] = load_google_credentials,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
        clock: Clock = system_clock,
    ) -> None:
        self._credentials_loader = credentials_loader
        self._transport = transport
        self._timeout = timeout
        self._clock = clock

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)

    def build_consent_url(self, *, redirect_uri: str, scopes: Sequence[str], state: str) -> str:
        """Return Google's consent URL requesting offline access."""
        creds = self._credentials_loader()
        params = {
            "client_id": creds.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, *, redirect_uri: str, code: str) -> dict[str, Any]:
        """Exchange a Google authorization code for Google tokens.

        The returned mapping carries Google's fields plus ``expiry_date``
        (epoch milliseconds), the shape stored in the account token file.

        Raises
        ------
        UpstreamError
            On transport failures or a non-2xx answer from Google.
        """
        creds = self._credentials_loader()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
        }
        try:
            async with self._client() as client:
                resp = await client.post(
                    GOOGLE_TOKEN_URL, data=data, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Google token endpoint unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise UpstreamError(_google_error(resp), status_code=resp.status_code)
        try:
            tokens = resp.json()
        except ValueError:
            raise UpstreamError("Google token endpoint returned invalid JSON") from None
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise UpstreamError("Google token response has no access_token")

        expires_in = tokens.get("expires_in")
        if isinstance(expires_in, (int, float)):
            tokens["expiry_date"] = int((self._clock() + expires_in) * 1000)
        _LOG.debug("Exchanged Google authorization code (refresh_token=%s)", "refresh_token" in tokens)
        return tokens

    async def fetch_account_email(self, access_token: str) -> str | None:
        """Return the Google account email for *access_token* if Google reports one."""
        async with self._client() as client:
            resp = await client.get(GOOGLE_TOKENINFO_URL, params={"access_token": access_token})
        resp.raise_for_status()
        email = resp.json().get("email")
        return str(email) if email else None


def _google_error(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"Google token exchange failed with HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("error"):
        desc = body.get("error_description")
        return f"{body['error']}: {desc}" if desc else str(body["error"])
    return f"Google token exchange failed with HTTP {resp.status_code}"
