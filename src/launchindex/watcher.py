"""Live index updates from filesystem notifications.

A ``watchdog`` observer thread receives raw events and hands the affected
paths to the asyncio loop. Each watched root owns a ``RootSync`` state
machine::

    IDLE -> EVENT_PENDING -> DEBOUNCING -> APPLYING -> IDLE

Pending paths are a set, so a burst of events on one path collapses into one
re-read. What happens to a path is decided by the filesystem at apply time,
not by the event kind, which makes out-of-order create/modify pairs harmless.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Iterable
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog
from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from launchindex.models.app import DesktopEntry, SkippedEntry
from launchindex.parser import read_desktop_entry
from launchindex.scanner import (
    ReconcileSummary,
    apply_parsed,
    apply_removed,
    discover_desktop_files,
    is_desktop_file,
    log_skip,
)

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from launchindex.index import IndexStore

log = structlog.get_logger()

ApplyFn = Callable[[str, frozenset[str]], Awaitable[None]]
# (source_path, parsed entry) to upsert, or (source_path, None) to remove
Change = tuple[str, DesktopEntry | None]


class SyncState(StrEnum):
    IDLE = "idle"
    EVENT_PENDING = "event_pending"
    DEBOUNCING = "debouncing"
    APPLYING = "applying"


class RootSync:
    """Debounce state machine for one watched root.

    ``push`` must be called on the event loop thread. Every push restarts the
    quiet window; once the window passes without events, the pending paths
    are handed to ``apply`` in one call. Pushes that arrive while applying are
    kept for a follow-up pass.
    """

    def __init__(self, root: str, apply: ApplyFn, debounce_seconds: float) -> None:
        self.root = root
        self.state = SyncState.IDLE
        self.batches = 0
        self._apply = apply
        self._debounce = debounce_seconds
        self._pending: set[str] = set()
        self._last_event = 0.0
        self._task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    def push(self, path: str) -> None:
        loop = asyncio.get_running_loop()
        self._pending.add(path)
        self._last_event = loop.time()
        self._idle.clear()
        if self.state is SyncState.IDLE:
            self.state = SyncState.EVENT_PENDING
            self._task = loop.create_task(self._run(), name=f"launchindex-sync:{self.root}")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while self._pending:
                self.state = SyncState.DEBOUNCING
                while (remaining := self._last_event + self._debounce - loop.time()) > 0:
                    await asyncio.sleep(remaining)

                self.state = SyncState.APPLYING
                paths = frozenset(self._pending)
                self._pending.clear()
                try:
                    await self._apply(self.root, paths)
                except Exception:
                    # The index keeps its last good state; the next event retries.
                    log.error("watch_apply_failed", root=self.root, paths=len(paths), exc_info=True)
                self.batches += 1
        finally:
            self.state = SyncState.IDLE
            self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()


class _EventForwarder(FileSystemEventHandler):
    """Runs on the observer thread; only forwards paths to the loop."""

    _RELEVANT = frozenset(
        {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED, EVENT_TYPE_CLOSED}
    )

    def __init__(self, loop: asyncio.AbstractEventLoop, sink: Callable[[str], None]) -> None:
        self._loop = loop
        self._sink = sink

    def _forward(self, path: str | bytes, is_directory: bool) -> None:
        path = os.fsdecode(path)
        if not is_directory and not is_desktop_file(path):
            return
        try:
            self._loop.call_soon_threadsafe(self._sink, path)
        except RuntimeError:
            # Loop already closed during shutdown; nothing left to update.
            log.debug("watch_event_dropped", path=path)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in self._RELEVANT:
            return
        # Directory "modified" just means its listing changed; the file events follow.
        if event.is_directory and event.event_type in (EVENT_TYPE_MODIFIED, EVENT_TYPE_CLOSED):
            return
        self._forward(event.src_path, event.is_directory)
        if event.event_type == EVENT_TYPE_MOVED:
            # A rename is remove(old) + add(new).
            self._forward(event.dest_path, event.is_directory)


def _within_depth(root: str, path: str, max_depth: int | None) -> bool:
    if max_depth is None:
        return True
    rel = os.path.relpath(path, root)
    if rel.startswith(os.pardir):
        return False
    return rel.count(os.sep) <= max_depth


def collect_changes(
    root: str,
    paths: Iterable[str],
    live_paths: Iterable[str],
    max_depth: int | None = None,
) -> list[Change]:
    """Turn changed paths into index operations by looking at the filesystem.

    Blocking; run it in a worker thread.
    """
    changes: dict[str, DesktopEntry | None] = {}
    live = list(live_paths)

    def forget_below(directory: str) -> None:
        prefix = directory.rstrip(os.sep) + os.sep
        for source_path in live:
            if source_path.startswith(prefix):
                changes.setdefault(source_path, None)

    for path in sorted(set(paths)):
        if os.path.isdir(path):
            found = {
                str(p)
                for p in discover_desktop_files([path])
                if _within_depth(root, str(p), max_depth)
            }
            for file_path in sorted(found):
                _read_into(file_path, changes)
            prefix = path.rstrip(os.sep) + os.sep
            for source_path in live:
                if source_path.startswith(prefix) and source_path not in found:
                    changes[source_path] = None
        elif os.path.isfile(path):
            if is_desktop_file(path) and _within_depth(root, path, max_depth):
                _read_into(path, changes)
            else:
                changes[path] = None
        else:
            changes[path] = None
            forget_below(path)

    return list(changes.items())


def _read_into(path: str, changes: dict[str, DesktopEntry | None]) -> None:
    outcome = read_desktop_entry(path)
    if isinstance(outcome, SkippedEntry):
        log_skip(outcome)
        changes[path] = None
    else:
        changes[path] = outcome


class SyncEngine:
    """Watches every scan root and reconciles the index incrementally."""

    def __init__(
        self,
        index: IndexStore,
        roots: Iterable[str],
        *,
        debounce_seconds: float = 0.25,
        max_depth: int | None = None,
        on_batch: Callable[[ReconcileSummary], None] | None = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
        apply_lock: asyncio.Lock | None = None,
    ) -> None:
        self._index = index
        self._roots = list(dict.fromkeys(roots))
        self._debounce = debounce_seconds
        self._max_depth = max_depth
        self._on_batch = on_batch
        self._observer_factory = observer_factory
        # Held from the filesystem read to the index write; shared with full rescans.
        self._apply_lock = apply_lock or asyncio.Lock()
        self._observer: BaseObserver | None = None
        self._syncs: dict[str, RootSync] = {}
        self.failed_roots: list[str] = []

    @property
    def watched_roots(self) -> list[str]:
        return list(self._syncs)

    @property
    def running(self) -> bool:
        return self._observer is not None

    def root_sync(self, root: str) -> RootSync | None:
        return self._syncs.get(root)

    def start(self) -> None:
        """Start watching. Must be called from the event loop thread."""
        if self._observer is not None:
            return
        loop = asyncio.get_running_loop()
        observer = self._observer_factory()
        observer.daemon = True
        # Scheduling on a live observer surfaces setup errors here, not on its thread.
        observer.start()
        self._observer = observer

        for root in self._roots:
            sync = RootSync(root, self._apply, self._debounce)
            try:
                if not os.path.isdir(root):
                    raise FileNotFoundError(f"not a directory: {root}")
                observer.schedule(_EventForwarder(loop, sync.push), root, recursive=True)
            except OSError as exc:
                log.warning("watch_setup_failed", root=root, error=str(exc))
                self.failed_roots.append(root)
                continue
            self._syncs[root] = sync
        log.info("watch_started", roots=len(self._syncs), failed=len(self.failed_roots))

    async def stop(self) -> None:
        """Stop receiving events, then let in-flight batches finish."""
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        observer.stop()
        await asyncio.to_thread(observer.join, 5.0)
        await asyncio.gather(*(sync.wait_idle() for sync in self._syncs.values()))
        log.info("watch_stopped")

    async def wait_idle(self) -> None:
        """Wait until no root has pending or in-flight work."""
        await asyncio.gather(*(sync.wait_idle() for sync in self._syncs.values()))

    async def _apply(self, root: str, paths: frozenset[str]) -> None:
        summary = ReconcileSummary()
        async with self._apply_lock:
            live_paths = list(self._index.snapshot().by_path)
            changes = await asyncio.to_thread(
                collect_changes, root, paths, live_paths, self._max_depth
            )
            with self._index.batch() as b:
                for source_path, parsed in changes:
                    if parsed is None:
                        apply_removed(b, source_path, summary)
                    else:
                        apply_parsed(b, parsed, summary)

        log.debug("watch_batch_applied", root=root, paths=len(paths))
        if summary.changed:
            log.info(
                "watch_index_updated",
                root=root,
                added=len(summary.added),
                updated=len(summary.updated),
                removed=len(summary.removed),
            )
            if self._on_batch is not None:
                self._on_batch(summary)
