from __future__ import annotations

from launchindex.models.app import AppEntry, DesktopEntry, SkippedEntry, SkipReason
from launchindex.models.search import SearchHit, SearchInput, SearchResult

__all__ = [
    # app
    "AppEntry",
    "DesktopEntry",
    "SkippedEntry",
    "SkipReason",
    # search
    "SearchInput",
    "SearchResult",
    "SearchHit",
]
