"""The Engine handle: one explicitly constructed object owning the index.

Startup loads the cache, runs a full scan off the event loop, reconciles and
starts the watcher. ``search`` is synchronous and purely in-memory. Everything
that touches the disk (scan, watch, flush) runs off the query path.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from launchindex.cache import FlushScheduler, load_index
from launchindex.errors import ErrorCode, LaunchIndexError
from launchindex.models.search import MAX_QUERY_LENGTH, SearchHit, SearchInput
from launchindex.ranker import rank
from launchindex.scanner import ReconcileSummary, reconcile, scan
from launchindex.watcher import SyncEngine

if TYPE_CHECKING:
    from launchindex.config import Settings
    from launchindex.index import IndexStore
    from launchindex.models.app import AppEntry

log = structlog.get_logger()


class Engine:
    def __init__(self, settings: Settings, index: IndexStore) -> None:
        self.settings = settings
        self.index = index
        self.flusher = FlushScheduler(
            index, settings.cache.db_path, delay=settings.cache.flush_delay_seconds
        )
        self.watcher: SyncEngine | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._sync_lock = asyncio.Lock()
        self._rescan_task: asyncio.Task[None] | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def initialize(cls, settings: Settings, *, watch: bool | None = None) -> Engine:
        """Load the cache, reconcile with a full scan and start live updates."""
        index = await load_index(settings.cache.db_path)
        engine = cls(settings, index)
        engine._loop = asyncio.get_running_loop()
        await engine.rescan()

        if settings.watch.enabled if watch is None else watch:
            engine._start_watcher()

        interval = settings.watch.rescan_interval_minutes
        if interval:
            engine._rescan_task = engine._loop.create_task(
                engine._periodic_rescan(interval * 60), name="launchindex-rescan"
            )

        log.info("engine_ready", apps=len(index))
        return engine

    @classmethod
    @contextlib.asynccontextmanager
    async def open(cls, settings: Settings, *, watch: bool | None = None) -> AsyncIterator[Engine]:
        """``initialize`` + guaranteed ``shutdown``."""
        engine = await cls.initialize(settings, watch=watch)
        try:
            yield engine
        finally:
            await engine.shutdown()

    async def shutdown(self) -> None:
        """Stop live updates and write the final state to disk. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._rescan_task is not None:
            self._rescan_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._rescan_task
            self._rescan_task = None

        if self.watcher is not None:
            await self.watcher.stop()

        await self.flusher.flush()
        log.info("engine_shutdown", apps=len(self.index))

    @property
    def closed(self) -> bool:
        return self._closed

    def _start_watcher(self) -> None:
        self.watcher = SyncEngine(
            self.index,
            self.settings.scan.app_paths,
            debounce_seconds=self.settings.watch.debounce_ms / 1000,
            max_depth=self.settings.scan.max_depth,
            on_batch=self._on_watch_batch,
            apply_lock=self._sync_lock,
        )
        self.watcher.start()

    def _on_watch_batch(self, summary: ReconcileSummary) -> None:
        self.flusher.schedule()

    async def _periodic_rescan(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.rescan()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def rescan(self) -> ReconcileSummary:
        """Full scan of every root, reconciled in one batch."""
        async with self._sync_lock:
            scanned = await asyncio.to_thread(
                scan, self.settings.scan.app_paths, self.settings.scan.max_depth
            )
            summary = reconcile(self.index, scanned)
        if summary.changed and not self._closed:
            self._schedule_flush()
        return summary

    def search(self, query: str, limit: int | None = None) -> list[SearchHit]:
        """Rank the current index snapshot against ``query``."""
        try:
            validated = SearchInput(query=query, limit=limit)
        except ValidationError as exc:
            raise LaunchIndexError(
                code=ErrorCode.INVALID_INPUT,
                message=exc.errors()[0]["msg"],
                suggestion=f"Use at most {MAX_QUERY_LENGTH} characters and a non-negative limit.",
                recoverable=False,
            ) from None

        results = rank(validated.query, self.index.snapshot(), self.settings.ranking, validated.limit)
        return [SearchHit.from_result(r) for r in results]

    def get(self, app_id: str) -> AppEntry | None:
        return self.index.get(app_id)

    def run(self, app_id: str) -> AppEntry:
        """Record a launch of ``app_id`` and schedule a flush.

        Raises ``LaunchIndexError(APP_NOT_FOUND)`` for an unknown id, typically
        a stale result list in the front end.
        """
        if self._closed:
            raise LaunchIndexError(
                code=ErrorCode.ENGINE_CLOSED,
                message="engine has been shut down",
                recoverable=False,
            )
        entry = self.index.record_run(app_id)
        if entry is None:
            log.debug("app_not_found", app_id=app_id)
            raise LaunchIndexError(
                code=ErrorCode.APP_NOT_FOUND,
                message=f"no application with id {app_id!r}",
                suggestion="Search again; the application may have been removed.",
                recoverable=True,
            )
        log.info("app_run", app_id=entry.id, name=entry.name, usage_count=entry.usage_count)
        self._schedule_flush()
        return entry

    def _schedule_flush(self) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None and running is self._loop:
            self.flusher.schedule()
        elif self._loop is not None:
            self._loop.call_soon_threadsafe(self.flusher.schedule)
