"""Unit tests for CalendarOAuthProvider, the MCP SDK adapter over the service."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from mcp.server.auth.provider import AuthorizationParams, AuthorizeError, TokenError
from mcp.shared.auth import OAuthClientInformationFull
from pydantic import AnyUrl

from google_calendar_mcp.mcp_oauth.errors import CredentialsError
from google_calendar_mcp.mcp_oauth.state import parse_auth_state
from google_calendar_mcp.servers.oauth import CalendarOAuthProvider

REDIRECT = "http://localhost:8765/callback"


@pytest.fixture
def provider(service) -> CalendarOAuthProvider:
    return CalendarOAuthProvider(service, base_url="http://localhost:3000")


@pytest.fixture
async def client(provider) -> OAuthClientInformationFull:
    info = OAuthClientInformationFull(
        client_id="sdk-generated", client_secret="sdk-secret", redirect_uris=[AnyUrl(REDIRECT)]
    )
    await provider.register_client(info)
    return info


def _params(explicit: bool = True) -> AuthorizationParams:
    return AuthorizationParams(
        state="client-state",
        scopes=None,
        code_challenge="challenge",
        redirect_uri=AnyUrl(REDIRECT),
        redirect_uri_provided_explicitly=explicit,
    )


async def _code(provider, upstream, client, explicit: bool = True) -> str:
    await provider.authorize(client, _params(explicit))
    state = parse_auth_state(upstream.consent_calls[-1]["state"])
    result = await provider.service.complete_external_auth("g-code", state.session_id, "normal")
    return parse_qs(urlsplit(result.location).query)["code"][0]


@pytest.mark.anyio
async def test_register_client_answers_with_registry_identifiers(provider, client) -> None:
    assert client.client_id == "id0001"
    assert client.client_secret == "mcp_cs_id0002"
    assert client.client_secret_expires_at == 0
    assert await provider.get_client("id0001") == provider.service.clients.get_client("id0001")
    assert await provider.get_client("sdk-generated") is None


@pytest.mark.anyio
async def test_register_public_client_keeps_no_secret(provider) -> None:
    info = OAuthClientInformationFull(
        client_id="sdk-generated",
        redirect_uris=[AnyUrl(REDIRECT)],
        token_endpoint_auth_method="none",
    )

    await provider.register_client(info)

    assert info.client_secret is None
    assert info.client_secret_expires_at is None


@pytest.mark.anyio
async def test_authorize_returns_google_consent_url(provider, upstream, client) -> None:
    url = await provider.authorize(client, _params())
    assert url.startswith("https://accounts.example.test/consent?")
    assert upstream.consent_calls[0]["redirect_uri"] == "http://localhost:3000/oauth2callback"


@pytest.mark.anyio
async def test_missing_google_credentials_become_server_error(provider, upstream, client) -> None:
    upstream.consent_error = CredentialsError("gcp-oauth.keys.json not found")

    with pytest.raises(AuthorizeError) as excinfo:
        await provider.authorize(client, _params())

    assert excinfo.value.error == "server_error"


@pytest.mark.anyio
@pytest.mark.parametrize("explicit", [True, False])
async def test_authorization_code_carries_redirect_binding(
    provider, upstream, client, explicit
) -> None:
    code = await _code(provider, upstream, client, explicit)

    loaded = await provider.load_authorization_code(client, code)

    assert loaded.redirect_uri_provided_explicitly is explicit
    assert str(loaded.redirect_uri) == REDIRECT
    token = await provider.exchange_authorization_code(client, loaded)
    assert token.refresh_token.startswith("mcp_rt_")


@pytest.mark.anyio
async def test_consumed_code_raises_token_error(provider, upstream, client) -> None:
    code = await _code(provider, upstream, client)
    loaded = await provider.load_authorization_code(client, code)
    await provider.exchange_authorization_code(client, loaded)

    with pytest.raises(TokenError) as excinfo:
        await provider.exchange_authorization_code(client, loaded)

    assert excinfo.value.error == "invalid_grant"
    assert await provider.load_authorization_code(client, code) is None


@pytest.mark.anyio
async def test_access_tokens_load_until_they_expire(provider, upstream, client, clock) -> None:
    code = await _code(provider, upstream, client)
    token = await provider.exchange_authorization_code(
        client, await provider.load_authorization_code(client, code)
    )

    loaded = await provider.load_access_token(token.access_token)
    assert loaded.client_id == client.client_id
    assert loaded.expires_at == int(clock()) + 3600

    clock.advance(3601)
    assert await provider.load_access_token(token.access_token) is None
    assert await provider.load_access_token("mcp_at_unknown") is None


@pytest.mark.anyio
async def test_expired_refresh_token_is_refused_but_revocable(
    provider, upstream, client, clock
) -> None:
    code = await _code(provider, upstream, client)
    issued = await provider.exchange_authorization_code(
        client, await provider.load_authorization_code(client, code)
    )
    clock.advance(30 * 24 * 3600 - 10)
    refresh = await provider.load_refresh_token(client, issued.refresh_token)
    derived = await provider.exchange_refresh_token(client, refresh, [])
    clock.advance(20)

    expired = await provider.load_refresh_token(client, issued.refresh_token)
    assert expired is not None
    with pytest.raises(TokenError):
        await provider.exchange_refresh_token(client, expired, [])

    await provider.revoke_token(expired)

    assert await provider.load_access_token(derived.access_token) is None
    assert await provider.load_refresh_token(client, issued.refresh_token) is None


@pytest.mark.anyio
async def test_revoke_access_token_leaves_refresh_token(provider, upstream, client) -> None:
    code = await _code(provider, upstream, client)
    issued = await provider.exchange_authorization_code(
        client, await provider.load_authorization_code(client, code)
    )

    await provider.revoke_token(await provider.load_access_token(issued.access_token))

    assert await provider.load_access_token(issued.access_token) is None
    assert await provider.load_refresh_token(client, issued.refresh_token) is not None
