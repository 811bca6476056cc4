"""Shared fixtures: throwaway application directories and settings."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from launchindex.config import Settings
from tests.helpers import desktop_text

DesktopWriter = Callable[..., Path]


@pytest.fixture()
def apps_dir(tmp_path: Path) -> Path:
    d = tmp_path / "applications"
    d.mkdir()
    return d


@pytest.fixture()
def write_desktop(apps_dir: Path) -> DesktopWriter:
    """Write ``<stem>.desktop`` below the apps dir and return its path."""

    def _write(
        stem: str,
        name: str | None = None,
        exec_cmd: str | None = None,
        extra: str = "",
        subdir: str | None = None,
        raw: str | None = None,
    ) -> Path:
        directory = apps_dir / subdir if subdir else apps_dir
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{stem}.desktop"
        if raw is None:
            raw = desktop_text(
                name if name is not None else stem.title(),
                exec_cmd if exec_cmd is not None else stem,
                extra,
            )
        path.write_text(raw, encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def settings(tmp_path: Path, apps_dir: Path) -> Settings:
    return Settings(
        scan={"app_paths": [str(apps_dir)]},
        cache={"db_path": str(tmp_path / "data" / "apps.db"), "flush_delay_seconds": 0.01},
        watch={"enabled": False, "debounce_ms": 50},
    )


@pytest.fixture()
def now() -> datetime:
    return datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
