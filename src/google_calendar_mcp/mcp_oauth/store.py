"""On-disk snapshots for the MCP OAuth stores.

This module introduces a *narrow* persistence interface
(:class:`SnapshotStore`) and a JSON-file implementation
(:class:`JsonFileSnapshot`).  Stores keep their state in memory and hand a
full snapshot to :meth:`SnapshotStore.save`; the file is a crash-recovery
copy, never the source of truth.

* **Atomicity** – writes use *temp-file + os.replace*.
* **Privacy** – files are created with mode ``0600``; they hold bearer
  credentials.
* **Portability** – only standard-library modules are required.

Environment variables
---------------------
GOOGLE_CALENDAR_MCP_STORAGE_DIR
    Base directory for all persisted data (see :mod:`google_calendar_mcp.config`).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

_LOG = logging.getLogger("google-calendar-mcp.mcp_oauth.store")

CLIENTS_FILENAME = "mcp-clients.json"
TOKENS_FILENAME = "mcp-tokens.json"

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class SnapshotStore(Protocol):
    """Whole-document persistence contract used by the registry and ledger."""

    def load(self) -> dict[str, Any] | None: ...
    def save(self, data: dict[str, Any]) -> None: ...


class JsonFileSnapshot(SnapshotStore):
    """JSON-file implementation of :class:`SnapshotStore`."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> dict[str, Any] | None:
        """Return the stored document, or ``None`` when no file exists yet.

        Raises
        ------
        OSError, ValueError
            When the file exists but cannot be read or decoded.
        """
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        if not isinstance(data, dict):
            raise ValueError(f"{self.path.name}: expected a JSON object")
        return data

    def save(self, data: dict[str, Any]) -> None:
        _atomic_write(self.path, data)
        _LOG.debug("Wrote snapshot %s", self.path.name)

    def __repr__(self) -> str:
        return f"JsonFileSnapshot({str(self.path)!r})"
