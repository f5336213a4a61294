"""
Unit tests for JsonFileSnapshot.

Coverage:
* missing file → ``None``
* atomic write leaves no temp file and restricts permissions
* corrupt content raises so callers can fall back to an empty store
"""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from google_calendar_mcp.mcp_oauth.store import JsonFileSnapshot


def test_load_missing_file_returns_none(tmp_path: Path) -> None:
    assert JsonFileSnapshot(tmp_path / "absent.json").load() is None


def test_save_then_load(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "mcp-tokens.json"
    snap = JsonFileSnapshot(path)
    snap.save({"access_tokens": {"mcp_at_1": {"client_id": "c"}}})

    assert path.exists()
    assert not list(path.parent.glob("*.tmp"))
    assert snap.load() == {"access_tokens": {"mcp_at_1": {"client_id": "c"}}}
    assert json.loads(path.read_text()) == snap.load()


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
def test_saved_file_is_owner_only(tmp_path: Path) -> None:
    path = tmp_path / "mcp-clients.json"
    JsonFileSnapshot(path).save({})
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_save_replaces_previous_content(tmp_path: Path) -> None:
    snap = JsonFileSnapshot(tmp_path / "s.json")
    snap.save({"a": 1})
    snap.save({"b": 2})
    assert snap.load() == {"b": 2}


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_load_rejects_corrupt_content(tmp_path: Path, content: str) -> None:
    path = tmp_path / "s.json"
    path.write_text(content)
    with pytest.raises(ValueError):
        JsonFileSnapshot(path).load()
