"""In-memory application index.

Copy-on-write: writers serialize on a lock, mutate private copies of the
mappings and publish them in one reference swap. Readers grab the published
``IndexSnapshot`` without locking, so a search never observes a half-applied
reconciliation batch.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime

from launchindex.models.app import AppEntry


def new_app_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class IndexSnapshot:
    """Immutable view of the index at one point in time."""

    # app id → entry
    by_id: dict[str, AppEntry] = field(default_factory=dict)

    # source_path → app id, for reconciliation
    by_path: dict[str, str] = field(default_factory=dict)

    # source_path → last known entry of a removed file, to restore its history
    retired: dict[str, AppEntry] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.by_id)

    def __iter__(self) -> Iterator[AppEntry]:
        return iter(self.by_id.values())


class IndexBatch:
    """Mutable working copy of a snapshot, published when the batch closes."""

    def __init__(self, base: IndexSnapshot) -> None:
        self.by_id = dict(base.by_id)
        self.by_path = dict(base.by_path)
        self.retired = dict(base.retired)
        self.changed = False

    def upsert(self, entry: AppEntry) -> bool:
        current = self.by_id.get(entry.id)
        if current == entry:
            return False

        if current is not None and current.source_path != entry.source_path:
            if self.by_path.get(current.source_path) == entry.id:
                del self.by_path[current.source_path]

        # source_path stays unique: a different id bound to this path is dropped
        stale_id = self.by_path.get(entry.source_path)
        if stale_id is not None and stale_id != entry.id:
            self.by_id.pop(stale_id, None)

        self.by_id[entry.id] = entry
        self.by_path[entry.source_path] = entry.id
        self.retired.pop(entry.source_path, None)
        self.changed = True
        return True

    def remove(self, source_path: str) -> AppEntry | None:
        app_id = self.by_path.pop(source_path, None)
        if app_id is None:
            return None
        entry = self.by_id.pop(app_id)
        self.retired[source_path] = entry
        self.changed = True
        return entry

    def record_run(self, app_id: str, when: datetime) -> AppEntry | None:
        entry = self.by_id.get(app_id)
        if entry is None:
            return None
        updated = entry.model_copy(
            update={"usage_count": entry.usage_count + 1, "last_used": when}
        )
        self.by_id[app_id] = updated
        self.changed = True
        return updated

    def restore_retired(self, entry: AppEntry) -> None:
        if entry.source_path in self.by_path:
            return
        self.retired[entry.source_path] = entry
        self.changed = True

    def freeze(self) -> IndexSnapshot:
        return IndexSnapshot(by_id=self.by_id, by_path=self.by_path, retired=self.retired)


class IndexStore:
    """The live index. All mutations are serialized; reads are lock-free."""

    def __init__(self, entries: list[AppEntry] | None = None) -> None:
        self._lock = threading.RLock()
        self._snapshot = IndexSnapshot()
        self._active: IndexBatch | None = None
        if entries:
            with self.batch() as b:
                for entry in entries:
                    b.upsert(entry)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def get(self, app_id: str) -> AppEntry | None:
        return self._snapshot.by_id.get(app_id)

    def get_by_path(self, source_path: str) -> AppEntry | None:
        snap = self._snapshot
        app_id = snap.by_path.get(source_path)
        if app_id is None:
            return None
        return snap.by_id.get(app_id)

    def retired(self, source_path: str) -> AppEntry | None:
        """Last known entry for a removed source_path, if any."""
        return self._snapshot.retired.get(source_path)

    def iter(self) -> Iterator[AppEntry]:
        """Iterate the current snapshot. Each call starts over."""
        return iter(self._snapshot)

    def __iter__(self) -> Iterator[AppEntry]:
        return self.iter()

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, app_id: object) -> bool:
        return app_id in self._snapshot.by_id

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @contextmanager
    def batch(self) -> Iterator[IndexBatch]:
        """Group mutations; readers see all of them or none.

        Nested calls join the outer batch. If the block raises, nothing is
        published.
        """
        with self._lock:
            if self._active is not None:
                yield self._active
                return
            working = IndexBatch(self._snapshot)
            self._active = working
            try:
                yield working
            finally:
                self._active = None
            if working.changed:
                self._snapshot = working.freeze()

    def upsert(self, entry: AppEntry) -> bool:
        """Insert or replace ``entry``. Returns False when nothing changed."""
        with self.batch() as b:
            return b.upsert(entry)

    def remove(self, source_path: str) -> AppEntry | None:
        """Remove the live entry for ``source_path``, keeping its history."""
        with self.batch() as b:
            return b.remove(source_path)

    def record_run(self, app_id: str, when: datetime | None = None) -> AppEntry | None:
        """Bump usage for ``app_id``. Returns None for an unknown id."""
        with self.batch() as b:
            return b.record_run(app_id, when or datetime.now(UTC))
