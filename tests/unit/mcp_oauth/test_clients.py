"""Unit tests for the ClientRegistry."""

from __future__ import annotations

import pytest
from mcp.shared.auth import OAuthClientInformationFull, OAuthClientMetadata

from google_calendar_mcp.mcp_oauth.clients import ClientRegistry
from google_calendar_mcp.mcp_oauth.tokens import CLIENT_SECRET_PREFIX


def _metadata(**overrides) -> OAuthClientMetadata:
    fields = {"redirect_uris": ["http://localhost:8765/callback"], "client_name": "Inspector"}
    fields.update(overrides)
    return OAuthClientMetadata.model_validate(fields)


def test_register_client_fills_generated_fields(registry, clock) -> None:
    info = registry.register_client(_metadata())

    assert info.client_id == "id0001"
    assert info.client_secret == CLIENT_SECRET_PREFIX + "id0002"
    assert info.client_id_issued_at == int(clock())
    assert info.client_secret_expires_at == 0
    assert info.client_name == "Inspector"
    assert [str(u) for u in info.redirect_uris] == ["http://localhost:8765/callback"]
    assert registry.get_client(info.client_id) == info
    assert info.client_id in registry


def test_register_client_skips_colliding_ids(clock, make_snapshot) -> None:
    values = iter(["dup", "secret-1", "dup", "fresh", "secret-2"])
    registry = ClientRegistry(make_snapshot(), clock=clock, token_factory=lambda: next(values))

    first = registry.register_client(_metadata())
    second = registry.register_client(_metadata())

    assert first.client_id == "dup"
    assert second.client_id == "fresh"
    assert len(registry) == 2


def test_unknown_client_is_none(registry) -> None:
    assert registry.get_client("missing") is None
    assert "missing" not in registry


def test_public_client_gets_no_secret(registry) -> None:
    info = registry.register_client(_metadata(token_endpoint_auth_method="none"))

    assert info.client_id == "id0001"
    assert info.client_secret is None
    assert info.client_secret_expires_at is None


def test_identifiers_supplied_by_the_sdk_are_replaced(registry, clock) -> None:
    sdk_info = OAuthClientInformationFull.model_validate(
        {
            "redirect_uris": ["http://localhost:8765/callback"],
            "client_id": "sdk-uuid",
            "client_secret": "sdk-hex",
            "client_id_issued_at": 1,
        }
    )

    info = registry.register_client(sdk_info)

    assert info.client_id == "id0001"
    assert info.client_secret == CLIENT_SECRET_PREFIX + "id0002"
    assert info.client_id_issued_at == int(clock())
    assert "sdk-uuid" not in registry


def test_registration_persists_and_reloads(clock, ids, make_snapshot) -> None:
    snapshot = make_snapshot()
    registry = ClientRegistry(snapshot, clock=clock, token_factory=ids)
    confidential = registry.register_client(_metadata())
    public = registry.register_client(_metadata(token_endpoint_auth_method="none"))

    assert len(snapshot.saves) == 2
    assert snapshot.saves[-1][confidential.client_id]["client_secret"] == confidential.client_secret
    assert "client_secret" not in snapshot.saves[-1][public.client_id]

    reloaded = ClientRegistry(make_snapshot(snapshot.data), clock=clock, token_factory=ids)
    reloaded.load()
    assert reloaded.get_client(confidential.client_id).client_secret == confidential.client_secret
    restored = reloaded.get_client(public.client_id)
    assert restored is not None
    assert restored.client_secret is None
    assert restored.token_endpoint_auth_method == "none"


def test_failed_write_registers_nothing(clock, ids, make_snapshot) -> None:
    snapshot = make_snapshot()
    snapshot.fail_save = OSError("read-only filesystem")
    registry = ClientRegistry(snapshot, clock=clock, token_factory=ids)

    with pytest.raises(OSError):
        registry.register_client(_metadata())

    assert len(registry) == 0
    assert registry.get_client("id0001") is None


def test_load_skips_malformed_records(clock, ids, make_snapshot) -> None:
    good = {
        "client_id": "good",
        "client_secret": "mcp_cs_x",
        "redirect_uris": ["http://localhost/cb"],
    }
    snapshot = make_snapshot({"good": good, "broken": {"client_id": "broken"}})
    registry = ClientRegistry(snapshot, clock=clock, token_factory=ids)

    registry.load()

    assert "good" in registry
    assert "broken" not in registry


def test_load_failure_starts_empty(clock, ids, make_snapshot) -> None:
    snapshot = make_snapshot()
    snapshot.fail_load = ValueError("corrupt")
    registry = ClientRegistry(snapshot, clock=clock, token_factory=ids)
    registry.load()
    assert len(registry) == 0
