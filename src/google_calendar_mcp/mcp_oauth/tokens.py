"""Token ledger for locally issued MCP credentials.

:class:`TokenLedger` tracks three families of opaque, prefixed strings:

================  ===========  ==========
family            prefix       lifetime
================  ===========  ==========
auth code         ``mcp_ac_``  10 minutes
access token      ``mcp_at_``  1 hour
refresh token     ``mcp_rt_``  30 days
================  ===========  ==========

Memory is the source of truth.  Every mutation schedules a debounced write of
the whole ledger to a :class:`~google_calendar_mcp.mcp_oauth.store.SnapshotStore`,
so a burst of mutations produces one write.  Write failures are logged and the
ledger stays dirty until the next flush succeeds.

Expiry is enforced lazily on every lookup *and* by a periodic sweep, so an
expired record is never returned even if the sweep has not run yet.

Concurrency
-----------
The ledger runs on a single asyncio loop and none of its methods await.
Check-and-delete operations such as :meth:`TokenLedger.consume_auth_code` and
the cascading :meth:`TokenLedger.revoke_tokens_by_refresh_token` are therefore
atomic with respect to other coroutines.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Final, Iterable

from google_calendar_mcp.mcp_oauth.models import (
    AccessTokenRecord,
    AuthorizationCodeRecord,
    Clock,
    OAuthTimings,
    RefreshTokenRecord,
    epoch_seconds,
    system_clock,
)
from google_calendar_mcp.mcp_oauth.store import SnapshotStore
from google_calendar_mcp.mcp_oauth.worker import BackgroundWorker, Scheduler, TimerHandle
from google_calendar_mcp.utils.logging import mask_sensitive

_LOG = logging.getLogger("google-calendar-mcp.mcp_oauth.tokens")

AUTH_CODE_PREFIX: Final[str] = "mcp_ac_"
ACCESS_TOKEN_PREFIX: Final[str] = "mcp_at_"
REFRESH_TOKEN_PREFIX: Final[str] = "mcp_rt_"
CLIENT_SECRET_PREFIX: Final[str] = "mcp_cs_"

TokenFactory = Callable[[], str]


def default_token_factory() -> str:
    """Return a random UUID4 string used as identifier / token body."""
    return str(uuid.uuid4())


class TokenLedger:
    """In-memory ledger of MCP auth codes, access tokens and refresh tokens."""

    def __init__(
        self,
        snapshot: SnapshotStore | None = None,
        *,
        clock: Clock = system_clock,
        token_factory: TokenFactory = default_token_factory,
        worker: Scheduler | None = None,
        timings: OAuthTimings | None = None,
    ) -> None:
        self._snapshot = snapshot
        self._clock = clock
        self._token_factory = token_factory
        self._owns_worker = worker is None
        self._worker: Scheduler = worker or BackgroundWorker("mcp-oauth.tokens")
        self.timings = timings or OAuthTimings()

        self._auth_codes: dict[str, AuthorizationCodeRecord] = {}
        self._access_tokens: dict[str, AccessTokenRecord] = {}
        self._refresh_tokens: dict[str, RefreshTokenRecord] = {}

        self._dirty = False
        self._persist_handle: TimerHandle | None = None
        self._sweep_handle: TimerHandle | None = None

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        """Load the snapshot, drop stale entries and start the periodic sweep."""
        self.load()
        self.sweep_expired()
        self._sweep_handle = self._worker.every(self.timings.sweep_interval, self.sweep_expired)

    async def shutdown(self) -> None:
        """Cancel timers and write any pending changes."""
        if self._sweep_handle is not None:
            self._sweep_handle.cancel()
            self._sweep_handle = None
        if self._persist_handle is not None:
            self._persist_handle.cancel()
            self._persist_handle = None
        if self._dirty:
            self.flush()
        if self._owns_worker:
            await self._worker.stop()

    def load(self) -> None:
        """Replace in-memory state with the snapshot; failures start empty."""
        if self._snapshot is None:
            return
        try:
            data = self._snapshot.load()
        except (OSError, ValueError) as exc:
            _LOG.warning("Failed to load MCP tokens, starting empty: %s", exc)
            return
        if not data:
            return
        self._auth_codes = _load_family(data.get("auth_codes"), AuthorizationCodeRecord)
        self._access_tokens = _load_family(data.get("access_tokens"), AccessTokenRecord)
        self._refresh_tokens = _load_family(data.get("refresh_tokens"), RefreshTokenRecord)
        _LOG.info(
            "Loaded MCP tokens: %d codes, %d access, %d refresh",
            len(self._auth_codes),
            len(self._access_tokens),
            len(self._refresh_tokens),
        )

    # ------------------------------------------------------------------ #
    # Authorization codes                                                #
    # ------------------------------------------------------------------ #
    def create_auth_code(
        self,
        client_id: str,
        code_challenge: str,
        redirect_uri: str,
        session_id: str,
        redirect_uri_provided_explicitly: bool = True,
    ) -> str:
        code = AUTH_CODE_PREFIX + self._token_factory()
        self._auth_codes[code] = AuthorizationCodeRecord(
            code=code,
            client_id=client_id,
            code_challenge=code_challenge,
            redirect_uri=redirect_uri,
            session_id=session_id,
            expires_at=self._now() + self.timings.auth_code_ttl,
            redirect_uri_provided_explicitly=redirect_uri_provided_explicitly,
        )
        self._schedule_persist()
        return code

    def get_auth_code(self, code: str) -> AuthorizationCodeRecord | None:
        return self._lookup(self._auth_codes, code)

    def consume_auth_code(
        self, code: str, client_id: str | None = None
    ) -> AuthorizationCodeRecord | None:
        """Return and delete *code* in one step.

        When *client_id* is given and the code belongs to another client,
        ``None`` is returned and the code stays usable by its owner.
        """
        record = self.get_auth_code(code)
        if record is None:
            return None
        if client_id is not None and record.client_id != client_id:
            return None
        del self._auth_codes[code]
        self._schedule_persist()
        return record

    # ------------------------------------------------------------------ #
    # Access tokens                                                      #
    # ------------------------------------------------------------------ #
    def create_access_token(
        self,
        client_id: str,
        scopes: Iterable[str] = (),
        refresh_token: str | None = None,
    ) -> AccessTokenRecord:
        token = ACCESS_TOKEN_PREFIX + self._token_factory()
        record = AccessTokenRecord(
            token=token,
            client_id=client_id,
            expires_at=self._now() + self.timings.access_token_ttl,
            scopes=tuple(scopes),
            refresh_token=refresh_token,
        )
        self._access_tokens[token] = record
        self._schedule_persist()
        return record

    def get_access_token(self, token: str) -> AccessTokenRecord | None:
        return self._lookup(self._access_tokens, token)

    def revoke_access_token(self, token: str) -> bool:
        if self._access_tokens.pop(token, None) is None:
            return False
        self._schedule_persist()
        return True

    # ------------------------------------------------------------------ #
    # Refresh tokens                                                     #
    # ------------------------------------------------------------------ #
    def create_refresh_token(
        self, client_id: str, scopes: Iterable[str] = ()
    ) -> RefreshTokenRecord:
        token = REFRESH_TOKEN_PREFIX + self._token_factory()
        record = RefreshTokenRecord(
            token=token,
            client_id=client_id,
            expires_at=self._now() + self.timings.refresh_token_ttl,
            scopes=tuple(scopes),
        )
        self._refresh_tokens[token] = record
        self._schedule_persist()
        return record

    def get_refresh_token(self, token: str) -> RefreshTokenRecord | None:
        return self._lookup(self._refresh_tokens, token)

    def peek_refresh_token(self, token: str) -> RefreshTokenRecord | None:
        """Return the stored record even when expired, without evicting it."""
        return self._refresh_tokens.get(token)

    def refresh_token_owner(self, token: str) -> str | None:
        """Return the client that *token* was issued to, valid or not.

        Falls back to the access tokens minted from it once the refresh
        record itself has been evicted, so a late revocation can still reach
        them.
        """
        record = self._refresh_tokens.get(token)
        if record is not None:
            return record.client_id
        for access in self._access_tokens.values():
            if access.refresh_token == token:
                return access.client_id
        return None

    def revoke_refresh_token(self, token: str) -> bool:
        """Delete only the refresh token; see :meth:`revoke_tokens_by_refresh_token`."""
        if self._refresh_tokens.pop(token, None) is None:
            return False
        self._schedule_persist()
        return True

    def revoke_tokens_by_refresh_token(self, refresh_token: str) -> int:
        """Delete *refresh_token* and every access token minted from it.

        Returns
        -------
        int
            Number of records removed (access tokens plus the refresh token).
        """
        doomed = [
            key
            for key, record in self._access_tokens.items()
            if record.refresh_token == refresh_token
        ]
        for key in doomed:
            del self._access_tokens[key]
        removed = len(doomed)
        if self._refresh_tokens.pop(refresh_token, None) is not None:
            removed += 1
        if removed:
            self._schedule_persist()
            _LOG.debug(
                "Revoked refresh token %s and %d access token(s)",
                mask_sensitive(refresh_token, 10),
                len(doomed),
            )
        return removed

    # ------------------------------------------------------------------ #
    # Maintenance                                                        #
    # ------------------------------------------------------------------ #
    def sweep_expired(self) -> int:
        """Evict expired records from all three families."""
        now = self._now()
        removed = 0
        for family in (self._auth_codes, self._access_tokens, self._refresh_tokens):
            stale = [key for key, record in family.items() if record.is_expired(now)]
            for key in stale:
                del family[key]
            removed += len(stale)
        if removed:
            _LOG.debug("Swept %d expired MCP token record(s)", removed)
            self._schedule_persist()
        return removed

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "auth_codes": {k: v.to_dict() for k, v in self._auth_codes.items()},
            "access_tokens": {k: v.to_dict() for k, v in self._access_tokens.items()},
            "refresh_tokens": {k: v.to_dict() for k, v in self._refresh_tokens.items()},
        }

    def flush(self) -> bool:
        """Write the ledger now.  Returns *False* if the write failed."""
        if self._snapshot is None:
            self._dirty = False
            return True
        try:
            self._snapshot.save(self.to_snapshot())
        except (OSError, TypeError, ValueError) as exc:
            _LOG.warning("Failed to persist MCP tokens: %s", exc)
            return False
        self._dirty = False
        return True

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #
    def _now(self) -> int:
        return epoch_seconds(self._clock)

    def _lookup(self, family: dict[str, Any], key: str) -> Any | None:
        record = family.get(key)
        if record is None:
            return None
        if record.is_expired(self._now()):
            del family[key]
            self._schedule_persist()
            return None
        return record

    def _schedule_persist(self) -> None:
        self._dirty = True
        if self._persist_handle is not None:
            return  # already scheduled
        self._persist_handle = self._worker.call_later(
            self.timings.persist_debounce, self._flush_scheduled
        )

    def _flush_scheduled(self) -> None:
        self._persist_handle = None
        if self._dirty:
            self.flush()


def _load_family(raw: Any, record_cls: Any) -> dict[str, Any]:
    records: dict[str, Any] = {}
    if not isinstance(raw, dict):
        return records
    for key, value in raw.items():
        try:
            records[key] = record_cls.from_dict(value)
        except (KeyError, TypeError, ValueError):
            _LOG.warning("Skipping malformed %s entry in snapshot", record_cls.__name__)
    return records
