"""Desktop-entry discovery and full-scan reconciliation."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from launchindex.index import new_app_id
from launchindex.models.app import AppEntry, DesktopEntry, SkippedEntry
from launchindex.parser import DESKTOP_FILE_SUFFIX, read_desktop_entry

if TYPE_CHECKING:
    from launchindex.index import IndexStore, IndexBatch

log = structlog.get_logger()


@dataclass
class ReconcileSummary:
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)

    def merge(self, other: ReconcileSummary) -> None:
        self.added.extend(other.added)
        self.updated.extend(other.updated)
        self.removed.extend(other.removed)


def is_desktop_file(path: str | Path) -> bool:
    return str(path).endswith(DESKTOP_FILE_SUFFIX)


def _walk(
    directory: Path,
    depth: int,
    max_depth: int | None,
    visited: set[str],
    found: list[Path],
    seen_files: set[str],
) -> None:
    try:
        real = os.path.realpath(directory)
    except OSError:
        return
    if real in visited:
        return
    visited.add(real)

    try:
        children = sorted(os.scandir(directory), key=lambda d: d.name)
    except OSError as exc:
        log.warning("scan_dir_unreadable", path=str(directory), error=str(exc))
        return

    for child in children:
        try:
            if child.is_dir():  # follows symlinks; ``visited`` stops loops
                if max_depth is None or depth < max_depth:
                    _walk(Path(child.path), depth + 1, max_depth, visited, found, seen_files)
            elif child.is_file() and is_desktop_file(child.name):
                if child.path not in seen_files:
                    seen_files.add(child.path)
                    found.append(Path(child.path))
        except OSError:
            log.debug("scan_entry_unreadable", path=child.path, exc_info=True)


def discover_desktop_files(
    roots: Iterable[str | Path], max_depth: int | None = None
) -> list[Path]:
    """Every ``*.desktop`` file below ``roots``, in root order.

    ``max_depth`` counts directory levels below a root (0 = the root only).
    Symlinked directories are followed once per real path.
    """
    visited: set[str] = set()
    seen_files: set[str] = set()
    found: list[Path] = []
    for root in roots:
        root = Path(root)
        if not root.is_dir():
            log.info("scan_root_missing", path=str(root))
            continue
        _walk(root, 0, max_depth, visited, found, seen_files)
    return found


def scan(roots: Iterable[str | Path], max_depth: int | None = None) -> dict[str, DesktopEntry]:
    """Parse every desktop file below ``roots``; keyed by source_path."""
    scanned: dict[str, DesktopEntry] = {}
    skipped = 0
    for path in discover_desktop_files(roots, max_depth):
        outcome = read_desktop_entry(path)
        if isinstance(outcome, SkippedEntry):
            skipped += 1
            log_skip(outcome)
            continue
        scanned[outcome.source_path] = outcome
    log.info("scan_complete", apps=len(scanned), skipped=skipped)
    return scanned


def log_skip(skipped: SkippedEntry) -> None:
    log.debug(
        "desktop_entry_skipped",
        path=skipped.source_path,
        reason=skipped.reason.value,
        detail=skipped.detail or None,
    )


def apply_parsed(batch: IndexBatch, parsed: DesktopEntry, summary: ReconcileSummary) -> None:
    """Merge one parsed file into the index, preserving identity and history."""
    app_id = batch.by_path.get(parsed.source_path)
    if app_id is not None:
        current = batch.by_id[app_id]
        if current.same_fields_as(parsed):
            return
        batch.upsert(current.with_fields_from(parsed))
        summary.updated.append(app_id)
        return

    previous = batch.retired.get(parsed.source_path)
    if previous is not None:
        entry = previous.with_fields_from(parsed)
    else:
        entry = AppEntry(id=new_app_id(), **parsed.model_dump())
    batch.upsert(entry)
    summary.added.append(entry.id)


def apply_removed(batch: IndexBatch, source_path: str, summary: ReconcileSummary) -> None:
    removed = batch.remove(source_path)
    if removed is not None:
        summary.removed.append(removed.id)


def reconcile(index: IndexStore, scanned: Mapping[str, DesktopEntry]) -> ReconcileSummary:
    """Make the live index match a full scan result, in one atomic batch."""
    summary = ReconcileSummary()
    with index.batch() as b:
        for parsed in scanned.values():
            apply_parsed(b, parsed, summary)
        for source_path in [p for p in b.by_path if p not in scanned]:
            apply_removed(b, source_path, summary)
    if summary.changed:
        log.info(
            "index_reconciled",
            added=len(summary.added),
            updated=len(summary.updated),
            removed=len(summary.removed),
        )
    return summary
