"""SQLite application cache with atomic replacement.

The whole index (live and retired entries) is written to a fresh SQLite file
next to the target and renamed over it, so a crash mid-write leaves the
previous cache intact. Rows are inserted in id order, which makes the file
bytes a pure function of the index content.

All cache operations catch ``aiosqlite.Error`` and ``OSError`` internally and
degrade gracefully: a load failure yields an empty index (the scanner
repopulates it, losing usage history), a write failure is logged and retried on
the next scheduled flush. Infrastructure errors never cross this module's
boundary. They are logged with ``exc_info=True`` so they remain observable.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from pydantic import ValidationError

from launchindex.index import IndexStore
from launchindex.models.app import AppEntry

if TYPE_CHECKING:
    from launchindex.index import IndexSnapshot

log = structlog.get_logger()

SCHEMA_VERSION = 1

_CREATE_APPS_TABLE = """
CREATE TABLE apps (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    exec         TEXT NOT NULL,
    icon         TEXT,
    terminal     INTEGER NOT NULL DEFAULT 0,
    source_path  TEXT NOT NULL UNIQUE,
    usage_count  INTEGER NOT NULL DEFAULT 0,
    last_used    TEXT,
    retired      INTEGER NOT NULL DEFAULT 0
)
"""

_INSERT_APP = (
    "INSERT INTO apps "
    "(id, name, exec, icon, terminal, source_path, usage_count, last_used, retired) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
)

_SELECT_APPS = (
    "SELECT id, name, exec, icon, terminal, source_path, usage_count, last_used, retired "
    "FROM apps ORDER BY id"
)


class CacheFormatError(Exception):
    """The cache file exists but does not hold a usable index."""


def _to_row(entry: AppEntry, retired: bool) -> tuple[object, ...]:
    return (
        entry.id,
        entry.name,
        entry.exec,
        entry.icon,
        int(entry.terminal),
        entry.source_path,
        entry.usage_count,
        entry.last_used.isoformat() if entry.last_used is not None else None,
        int(retired),
    )


def _from_row(row: aiosqlite.Row | tuple[object, ...]) -> tuple[AppEntry, bool]:
    last_used = datetime.fromisoformat(row[7]) if row[7] is not None else None  # type: ignore[arg-type]
    entry = AppEntry(
        id=row[0],
        name=row[1],
        exec=row[2],
        icon=row[3],
        terminal=bool(row[4]),
        source_path=row[5],
        usage_count=row[6],
        last_used=last_used,
    )
    return entry, bool(row[8])


# ------------------------------------------------------------------
# Load
# ------------------------------------------------------------------


async def _read_rows(path: Path) -> list[tuple[AppEntry, bool]]:
    uri = f"{path.resolve().as_uri()}?mode=ro"
    async with aiosqlite.connect(uri, uri=True) as db:
        cursor = await db.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        version = row[0] if row else 0
        if version != SCHEMA_VERSION:
            raise CacheFormatError(f"unsupported cache schema version {version}")
        cursor = await db.execute(_SELECT_APPS)
        rows = await cursor.fetchall()
    return [_from_row(r) for r in rows]


async def load_index(path: str | Path) -> IndexStore:
    """Load the cache at ``path``. Missing or corrupt caches yield an empty index."""
    path = Path(path)
    if not path.exists():
        log.info("cache_missing", path=str(path))
        return IndexStore()

    try:
        rows = await _read_rows(path)
    except (aiosqlite.Error, OSError, ValueError, ValidationError, CacheFormatError):
        log.warning("cache_load_failed", path=str(path), exc_info=True)
        return IndexStore()

    index = IndexStore()
    with index.batch() as b:
        for entry, retired in rows:
            if retired:
                b.restore_retired(entry)
            else:
                b.upsert(entry)
    log.info("cache_loaded", path=str(path), apps=len(index), retired=len(rows) - len(index))
    return index


# ------------------------------------------------------------------
# Save
# ------------------------------------------------------------------


async def _write_database(tmp_path: Path, snapshot: IndexSnapshot) -> None:
    rows = [_to_row(e, retired=False) for e in snapshot.by_id.values()]
    rows += [_to_row(e, retired=True) for e in snapshot.retired.values()]
    rows.sort(key=lambda r: r[0])  # type: ignore[arg-type,return-value]

    async with aiosqlite.connect(tmp_path) as db:
        await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await db.execute(_CREATE_APPS_TABLE)
        await db.executemany(_INSERT_APP, rows)
        await db.commit()


async def save_index(path: str | Path, index: IndexStore | IndexSnapshot) -> bool:
    """Atomically write ``index`` to ``path``. Returns False on failure."""
    path = Path(path)
    snapshot = index.snapshot() if isinstance(index, IndexStore) else index
    tmp_path: Path | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        os.close(fd)
        tmp_path = Path(tmp_name)
        await _write_database(tmp_path, snapshot)
        os.replace(tmp_path, path)
    except (aiosqlite.Error, OSError):
        log.warning("cache_write_failed", path=str(path), exc_info=True)
        if tmp_path is not None:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
        return False

    log.debug("cache_saved", path=str(path), apps=len(snapshot))
    return True


# ------------------------------------------------------------------
# Flush scheduling
# ------------------------------------------------------------------


class FlushScheduler:
    """Coalesces save requests into delayed background flushes.

    ``schedule()`` never blocks; any number of calls before the delay elapses
    produce a single save of whatever the index holds at that moment. A failed
    save keeps the scheduler dirty so the next ``schedule()`` retries it.
    """

    def __init__(self, index: IndexStore, path: str | Path, delay: float = 2.0) -> None:
        self._index = index
        self._path = Path(path)
        self._delay = delay
        self._dirty = False
        self._sleeping = False
        self._flushing_now = False
        self._task: asyncio.Task[None] | None = None
        self._save_lock = asyncio.Lock()
        self.saves = 0
        self.failures = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        self._dirty = True
        if self.pending:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._delayed_flush(), name="launchindex-flush"
        )

    async def _delayed_flush(self) -> None:
        # Loop so requests that arrive during a save get their own flush.
        while self._dirty and not self._flushing_now:
            self._sleeping = True
            try:
                await asyncio.sleep(self._delay)
            finally:
                self._sleeping = False
            if not await self._save():
                return

    async def _save(self) -> bool:
        async with self._save_lock:
            if not self._dirty:
                return True
            self._dirty = False
            ok = await save_index(self._path, self._index)
            if ok:
                self.saves += 1
            else:
                self.failures += 1
                self._dirty = True
            return ok

    async def flush(self) -> bool:
        """Save now, superseding any pending delayed flush (used at shutdown)."""
        self._flushing_now = True
        try:
            task = self._task
            if task is not None and not task.done():
                # Only interrupt the delay; a save already running completes.
                if self._sleeping:
                    task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._task = None
            self._dirty = True
            return await self._save()
        finally:
            self._flushing_now = False

    async def wait(self) -> None:
        """Wait for the currently scheduled flush, if any."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)
