"""Registry of dynamically registered MCP OAuth clients (RFC 7591).

Clients are few and registrations rare, so every registration writes the
whole registry through the :class:`~google_calendar_mcp.mcp_oauth.store.SnapshotStore`
*before* it becomes visible.  A failed write propagates to the caller and
leaves the in-memory registry untouched.  Clients are never deleted.

Records are the MCP SDK's :class:`mcp.shared.auth.OAuthClientInformationFull`
models, persisted in their JSON form keyed by ``client_id``.
"""

from __future__ import annotations

import logging
from typing import Any

from mcp.shared.auth import OAuthClientInformationFull, OAuthClientMetadata
from pydantic import ValidationError

from google_calendar_mcp.mcp_oauth.models import Clock, epoch_seconds, system_clock
from google_calendar_mcp.mcp_oauth.store import SnapshotStore
from google_calendar_mcp.mcp_oauth.tokens import (
    CLIENT_SECRET_PREFIX,
    TokenFactory,
    default_token_factory,
)

_LOG = logging.getLogger("google-calendar-mcp.mcp_oauth.clients")

_ISSUED_FIELDS = {"client_id", "client_secret", "client_id_issued_at", "client_secret_expires_at"}


class ClientRegistry:
    """Durable map of ``client_id`` to registered client information."""

    def __init__(
        self,
        snapshot: SnapshotStore | None = None,
        *,
        clock: Clock = system_clock,
        token_factory: TokenFactory = default_token_factory,
    ) -> None:
        self._snapshot = snapshot
        self._clock = clock
        self._token_factory = token_factory
        self._clients: dict[str, OAuthClientInformationFull] = {}

    def load(self) -> None:
        """Populate the registry from the snapshot; failures start empty."""
        if self._snapshot is None:
            return
        try:
            data = self._snapshot.load()
        except (OSError, ValueError) as exc:
            _LOG.warning("Failed to load MCP clients, starting empty: %s", exc)
            return
        for client_id, raw in (data or {}).items():
            try:
                self._clients[client_id] = OAuthClientInformationFull.model_validate(raw)
            except ValidationError:
                _LOG.warning("Skipping malformed client record %s", client_id)
        _LOG.info("Loaded %d registered MCP client(s)", len(self._clients))

    def get_client(self, client_id: str) -> OAuthClientInformationFull | None:
        return self._clients.get(client_id)

    def register_client(self, metadata: OAuthClientMetadata) -> OAuthClientInformationFull:
        """Register a new client and persist the registry.

        Identifiers already present on *metadata* (the MCP SDK fills in its
        own) are replaced.  Public clients registering with
        ``token_endpoint_auth_method="none"`` get no secret.

        Parameters
        ----------
        metadata:
            Client-supplied registration metadata (already validated).

        Returns
        -------
        OAuthClientInformationFull
            The stored record including the generated ``client_id`` and, for
            confidential clients, ``client_secret``.

        Raises
        ------
        OSError
            If the registry cannot be written; nothing is registered then.
        """
        client_id = self._token_factory()
        while client_id in self._clients:
            client_id = self._token_factory()

        record = metadata.model_dump(mode="json", exclude_none=True, exclude=_ISSUED_FIELDS)
        record["client_id"] = client_id
        record["client_id_issued_at"] = epoch_seconds(self._clock)
        if metadata.token_endpoint_auth_method != "none":
            record["client_secret"] = CLIENT_SECRET_PREFIX + self._token_factory()
            record["client_secret_expires_at"] = 0
        info = OAuthClientInformationFull.model_validate(record)

        updated = {**self._clients, client_id: info}
        if self._snapshot is not None:
            self._snapshot.save(_to_snapshot(updated))
        self._clients = updated
        _LOG.info(
            "Registered MCP client %s (%s)", client_id, info.client_name or "unnamed"
        )
        return info

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients


def _to_snapshot(clients: dict[str, OAuthClientInformationFull]) -> dict[str, Any]:
    return {
        cid: info.model_dump(mode="json", exclude_none=True) for cid, info in clients.items()
    }
