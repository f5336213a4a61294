"""Shared fixtures and deterministic fakes for the test-suite."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence
from urllib.parse import urlencode

import pytest

from google_calendar_mcp.mcp_oauth.clients import ClientRegistry
from google_calendar_mcp.mcp_oauth.models import OAuthTimings
from google_calendar_mcp.mcp_oauth.service import McpOAuthService
from google_calendar_mcp.mcp_oauth.tokens import TokenLedger

FAKE_CONSENT_URL = "https://accounts.example.test/consent"
NOW = 1_700_000_000


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# --------------------------------------------------------------------------- #
# fakes                                                                       #
# --------------------------------------------------------------------------- #
class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, now: float = NOW) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SequentialIds:
    """Token factory producing predictable, unique bodies."""

    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}{self.count:04d}"


class MemorySnapshot:
    """In-memory SnapshotStore that records every save."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data = data
        self.saves: list[dict[str, Any]] = []
        self.fail_save: Exception | None = None
        self.fail_load: Exception | None = None

    def load(self) -> dict[str, Any] | None:
        if self.fail_load is not None:
            raise self.fail_load
        return self.data

    def save(self, data: dict[str, Any]) -> None:
        if self.fail_save is not None:
            raise self.fail_save
        self.data = data
        self.saves.append(data)


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualWorker:
    """Scheduler whose timers fire only when the test says so."""

    def __init__(self) -> None:
        self.delayed: list[tuple[float, Callable[[], None], _Handle]] = []
        self.periodic: list[tuple[float, Callable[[], None], _Handle]] = []
        self.stopped = False

    def call_later(self, delay: float, callback: Callable[[], None]) -> _Handle:
        handle = _Handle()
        self.delayed.append((delay, callback, handle))
        return handle

    def every(self, interval: float, callback: Callable[[], None]) -> _Handle:
        handle = _Handle()
        self.periodic.append((interval, callback, handle))
        return handle

    def run_delayed(self) -> int:
        """Fire all pending one-shot timers; return how many ran."""
        pending, self.delayed = self.delayed, []
        ran = 0
        for _delay, callback, handle in pending:
            if not handle.cancelled:
                callback()
                ran += 1
        return ran

    def tick(self) -> None:
        for _interval, callback, handle in self.periodic:
            if not handle.cancelled:
                callback()

    @property
    def active_delayed(self) -> int:
        return sum(1 for _d, _cb, h in self.delayed if not h.cancelled)

    async def stop(self) -> None:
        self.stopped = True
        for _d, _cb, handle in self.delayed + self.periodic:
            handle.cancel()


class FakeUpstream:
    """Stand-in for Google: records calls, returns canned tokens."""

    def __init__(self) -> None:
        self.consent_calls: list[dict[str, Any]] = []
        self.exchanged: list[dict[str, str]] = []
        self.tokens: dict[str, Any] = {
            "access_token": "ya29.google-access",
            "refresh_token": "1//google-refresh",
            "expires_in": 3599,
            "token_type": "Bearer",
        }
        self.email: str | None = "person@example.com"
        self.exchange_error: Exception | None = None
        self.email_error: Exception | None = None
        self.consent_error: Exception | None = None

    def build_consent_url(self, *, redirect_uri: str, scopes: Sequence[str], state: str) -> str:
        if self.consent_error is not None:
            raise self.consent_error
        self.consent_calls.append({"redirect_uri": redirect_uri, "scopes": list(scopes), "state": state})
        return f"{FAKE_CONSENT_URL}?{urlencode({'state': state, 'redirect_uri': redirect_uri})}"

    async def exchange_code(self, *, redirect_uri: str, code: str) -> dict[str, Any]:
        self.exchanged.append({"redirect_uri": redirect_uri, "code": code})
        if self.exchange_error is not None:
            raise self.exchange_error
        return dict(self.tokens)

    async def fetch_account_email(self, access_token: str) -> str | None:
        if self.email_error is not None:
            raise self.email_error
        return self.email


class FakeAccounts:
    """AccountCredentialSink recording which account each write targeted."""

    def __init__(self, active: str = "normal") -> None:
        self.active = active
        self.writes: list[tuple[str, dict[str, Any], str | None]] = []
        self.fail: Exception | None = None

    def get_active_account(self) -> str:
        return self.active

    def set_active_account(self, account_id: str) -> None:
        self.active = account_id

    def persist_tokens(self, tokens: Mapping[str, Any], email: str | None = None) -> None:
        if self.fail is not None:
            raise self.fail
        self.writes.append((self.active, dict(tokens), email))


# --------------------------------------------------------------------------- #
# fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def worker() -> ManualWorker:
    return ManualWorker()


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def ledger_snapshot() -> MemorySnapshot:
    return MemorySnapshot()


@pytest.fixture
def ledger(ledger_snapshot, clock, worker, ids) -> TokenLedger:
    return TokenLedger(
        ledger_snapshot, clock=clock, token_factory=ids, worker=worker, timings=OAuthTimings()
    )


@pytest.fixture
def registry(clock, ids) -> ClientRegistry:
    return ClientRegistry(MemorySnapshot(), clock=clock, token_factory=ids)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def accounts() -> FakeAccounts:
    return FakeAccounts()


@pytest.fixture
def service(registry, ledger, upstream, accounts, clock, ids, worker) -> McpOAuthService:
    return McpOAuthService(
        issuer_url="http://localhost:3000",
        clients=registry,
        tokens=ledger,
        upstream=upstream,
        accounts=accounts,
        account_id="normal",
        clock=clock,
        token_factory=ids,
        worker=worker,
    )


@pytest.fixture
def make_snapshot() -> Callable[..., MemorySnapshot]:
    """Factory for extra in-memory snapshots within one test."""
    return MemorySnapshot
