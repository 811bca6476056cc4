"""Unit tests for launchindex.cache."""

from __future__ import annotations

import asyncio
import os
from datetime import datetime
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from launchindex import cache as cache_module
from launchindex.cache import FlushScheduler, load_index, save_index
from launchindex.index import IndexStore
from tests.helpers import make_entry

if TYPE_CHECKING:
    from pathlib import Path


def _sample_index(now: datetime) -> IndexStore:
    index = IndexStore(
        [
            make_entry("Firefox", usage_count=5, last_used=now),
            make_entry("Files", usage_count=2),
            make_entry("Terminal").model_copy(update={"icon": "utilities-terminal", "terminal": True}),
        ]
    )
    index.remove("/usr/share/applications/files.desktop")
    return index


# ---------------------------------------------------------------------------
# save / load
# ---------------------------------------------------------------------------


class TestRoundTrip:
    async def test_save_then_load_reproduces_index(self, tmp_path: Path, now: datetime) -> None:
        index = _sample_index(now)
        path = tmp_path / "apps.db"
        assert await save_index(path, index) is True

        loaded = await load_index(path)
        assert sorted(loaded, key=lambda e: e.id) == sorted(index, key=lambda e: e.id)
        assert loaded.get("id-firefox").last_used == now  # type: ignore[union-attr]

    async def test_retired_entries_survive(self, tmp_path: Path, now: datetime) -> None:
        path = tmp_path / "apps.db"
        await save_index(path, _sample_index(now))
        loaded = await load_index(path)
        retired = loaded.retired("/usr/share/applications/files.desktop")
        assert retired is not None
        assert retired.usage_count == 2
        assert loaded.get(retired.id) is None

    async def test_empty_index(self, tmp_path: Path) -> None:
        path = tmp_path / "apps.db"
        assert await save_index(path, IndexStore()) is True
        assert len(await load_index(path)) == 0

    async def test_creates_parent_directories(self, tmp_path: Path, now: datetime) -> None:
        path = tmp_path / "a" / "b" / "apps.db"
        assert await save_index(path, _sample_index(now)) is True
        assert path.exists()


class TestDeterministicBytes:
    async def test_same_content_same_bytes(self, tmp_path: Path, now: datetime) -> None:
        first, second = tmp_path / "one.db", tmp_path / "two.db"
        await save_index(first, _sample_index(now))
        await save_index(second, _sample_index(now))
        assert first.read_bytes() == second.read_bytes()

    async def test_insertion_order_does_not_matter(self, tmp_path: Path) -> None:
        entries = [make_entry("Firefox"), make_entry("Files"), make_entry("Terminal")]
        first, second = tmp_path / "one.db", tmp_path / "two.db"
        await save_index(first, IndexStore(entries))
        await save_index(second, IndexStore(list(reversed(entries))))
        assert first.read_bytes() == second.read_bytes()


class TestLoadFailures:
    async def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        index = await load_index(tmp_path / "missing.db")
        assert len(index) == 0

    async def test_corrupt_file_is_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "apps.db"
        path.write_bytes(b"this is not a sqlite database" * 100)
        index = await load_index(path)
        assert len(index) == 0

    async def test_zero_byte_file_is_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "apps.db"
        path.write_bytes(b"")
        assert len(await load_index(path)) == 0

    async def test_schema_mismatch_is_empty(self, tmp_path: Path, now: datetime) -> None:
        path = tmp_path / "apps.db"
        await save_index(path, _sample_index(now))
        async with aiosqlite.connect(path) as db:
            await db.execute("PRAGMA user_version = 99")
            await db.commit()
        assert len(await load_index(path)) == 0

    async def test_invalid_row_is_empty(self, tmp_path: Path, now: datetime) -> None:
        path = tmp_path / "apps.db"
        await save_index(path, _sample_index(now))
        async with aiosqlite.connect(path) as db:
            await db.execute("UPDATE apps SET usage_count = -3")
            await db.commit()
        assert len(await load_index(path)) == 0


class TestSaveFailures:
    async def test_write_failure_keeps_previous_cache(
        self, tmp_path: Path, now: datetime, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "apps.db"
        await save_index(path, _sample_index(now))
        good = path.read_bytes()

        async def failing_write(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(cache_module, "_write_database", failing_write)
        assert await save_index(path, IndexStore()) is False
        assert path.read_bytes() == good
        assert sorted(os.listdir(tmp_path)) == ["apps.db"]

    @pytest.mark.skipif(
        os.name == "nt" or (hasattr(os, "getuid") and os.getuid() == 0),
        reason="Permission checks don't apply on Windows or when running as root.",
    )
    async def test_unwriteable_directory_returns_false(self, tmp_path: Path) -> None:
        readonly = tmp_path / "readonly"
        readonly.mkdir()
        readonly.chmod(0o555)
        try:
            assert await save_index(readonly / "apps.db", IndexStore()) is False
        finally:
            readonly.chmod(0o755)


# ---------------------------------------------------------------------------
# FlushScheduler
# ---------------------------------------------------------------------------


class TestFlushScheduler:
    async def test_requests_are_coalesced(self, tmp_path: Path, now: datetime) -> None:
        index = _sample_index(now)
        flusher = FlushScheduler(index, tmp_path / "apps.db", delay=0.05)
        for _ in range(10):
            flusher.schedule()
        await flusher.wait()
        assert flusher.saves == 1
        assert not flusher.dirty

    async def test_flush_writes_latest_state(self, tmp_path: Path, now: datetime) -> None:
        index = _sample_index(now)
        path = tmp_path / "apps.db"
        flusher = FlushScheduler(index, path, delay=0.05)
        flusher.schedule()
        index.record_run("id-terminal")
        await flusher.wait()
        loaded = await load_index(path)
        assert loaded.get("id-terminal").usage_count == 1  # type: ignore[union-attr]

    async def test_flush_now_skips_the_delay(self, tmp_path: Path, now: datetime) -> None:
        path = tmp_path / "apps.db"
        flusher = FlushScheduler(_sample_index(now), path, delay=60)
        flusher.schedule()
        assert await asyncio.wait_for(flusher.flush(), timeout=5) is True
        assert path.exists()
        assert not flusher.pending
        assert flusher.saves == 1

    async def test_failed_flush_is_retried(
        self, tmp_path: Path, now: datetime, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        results = iter([False, True])
        calls = 0

        async def flaky_save(path, index):
            nonlocal calls
            calls += 1
            return next(results)

        monkeypatch.setattr(cache_module, "save_index", flaky_save)
        flusher = FlushScheduler(_sample_index(now), tmp_path / "apps.db", delay=0.01)

        flusher.schedule()
        await flusher.wait()
        assert flusher.failures == 1
        assert flusher.dirty

        flusher.schedule()
        await flusher.wait()
        assert flusher.saves == 1
        assert not flusher.dirty
        assert calls == 2
