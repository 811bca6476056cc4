"""Application index, fuzzy search and frecency cache for desktop launchers."""

from __future__ import annotations

from launchindex.config import Settings
from launchindex.engine import Engine
from launchindex.errors import ErrorCode, LaunchIndexError

__all__ = ["Engine", "ErrorCode", "LaunchIndexError", "Settings"]
