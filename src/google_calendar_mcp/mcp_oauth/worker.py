"""Background timers owned by the MCP OAuth stores.

All periodic sweeps and the debounced ledger flush run through one
:class:`BackgroundWorker` so that shutdown can cancel them as a unit.  Timers
are plain asyncio handles and tasks: they never keep the process alive once
the event loop stops.

When no event loop is running (CLI usage, synchronous tests) scheduling is a
no-op and callers are expected to flush explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol, runtime_checkable

_LOG = logging.getLogger("google-calendar-mcp.mcp_oauth.worker")


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """What the stores need from a timer owner."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle | None: ...
    def every(self, interval: float, callback: Callable[[], None]) -> TimerHandle | None: ...
    async def stop(self) -> None: ...


class BackgroundWorker(Scheduler):
    """asyncio implementation of :class:`Scheduler`."""

    def __init__(self, name: str = "mcp-oauth") -> None:
        self.name = name
        self._handles: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()

    def call_later(
        self, delay: float, callback: Callable[[], None]
    ) -> asyncio.TimerHandle | None:
        """Run *callback* once after *delay* seconds on the running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None

        def _run() -> None:
            self._handles.discard(handle)
            self._invoke(callback)

        handle = loop.call_later(delay, _run)
        self._handles.add(handle)
        return handle

    def every(self, interval: float, callback: Callable[[], None]) -> asyncio.Task | None:
        """Run *callback* every *interval* seconds until :meth:`stop`."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval)
                self._invoke(callback)

        task = loop.create_task(_loop(), name=f"{self.name}:{getattr(callback, '__name__', 'job')}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _invoke(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:  # broad: a failing job must not kill the timer loop
            _LOG.exception("Background job %r failed", callback)

    @property
    def pending(self) -> int:
        return len(self._handles) + len(self._tasks)

    async def stop(self) -> None:
        """Cancel every outstanding timer and periodic task."""
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        _LOG.debug("Worker %s stopped", self.name)
