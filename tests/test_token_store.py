"""Tests for agegate.token_store."""

from __future__ import annotations

import json
import os
import stat
from datetime import timedelta
from pathlib import Path

import pytest

from agegate.models import AccessToken, utcnow
from agegate.token_store import FileTokenStore, MemoryTokenStore


def _token(value: str = "tok", hours: float = 1) -> AccessToken:
    return AccessToken(value=value, expires_at=utcnow() + timedelta(hours=hours))


class TestMemoryTokenStore:
    def test_empty(self) -> None:
        assert MemoryTokenStore().load() is None

    def test_save_load_clear(self) -> None:
        store = MemoryTokenStore()
        store.save(_token())
        assert store.load().value == "tok"
        store.clear()
        store.clear()
        assert store.load() is None

    def test_save_replaces(self) -> None:
        store = MemoryTokenStore(_token("old"))
        store.save(_token("new"))
        assert store.load().value == "new"

    def test_expired_is_purged(self) -> None:
        store = MemoryTokenStore(_token(hours=-1))
        assert store.load() is None
        assert store._read() is None

    def test_load_at_given_time(self) -> None:
        token = _token(hours=1)
        store = MemoryTokenStore(token)
        assert store.load(now=token.expires_at + timedelta(seconds=1)) is None


class TestFileTokenStore:
    def test_path_under_data_dir(self, isolated_config: Path) -> None:
        store = FileTokenStore("streamflix")
        assert store.path == isolated_config / "data" / "agegate" / "tokens" / "streamflix.json"

    def test_save_and_load(self, isolated_config: Path) -> None:
        store = FileTokenStore()
        store.save(_token())

        loaded = FileTokenStore().load()
        assert loaded is not None
        assert loaded.value == "tok"
        assert loaded.token_type == "Bearer"

    def test_file_is_private(self, isolated_config: Path) -> None:
        store = FileTokenStore()
        store.save(_token())
        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600

    def test_slots_are_independent(self, isolated_config: Path) -> None:
        FileTokenStore("a").save(_token("a-token"))
        assert FileTokenStore("b").load() is None

    def test_clear(self, isolated_config: Path) -> None:
        store = FileTokenStore()
        store.save(_token())
        store.clear()
        store.clear()
        assert not store.path.exists()
        assert store.load() is None

    def test_expired_file_removed(self, isolated_config: Path) -> None:
        store = FileTokenStore()
        store.save(_token(hours=-1))
        assert store.load() is None
        assert not store.path.exists()

    @pytest.mark.parametrize("content", ["{not json", json.dumps({"value": "tok"}), "[]"])
    def test_unreadable_slot_is_empty(self, isolated_config: Path, content: str) -> None:
        store = FileTokenStore()
        store.path.write_text(content, encoding="utf-8")
        assert store.load() is None
