"""Builders shared by unit and integration tests."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime

from launchindex.models.app import AppEntry


def desktop_text(name: str | None = "App", exec_cmd: str | None = "app", extra: str = "") -> str:
    lines = ["[Desktop Entry]", "Type=Application"]
    if name is not None:
        lines.append(f"Name={name}")
    if exec_cmd is not None:
        lines.append(f"Exec={exec_cmd}")
    if extra:
        lines.append(extra.strip("\n"))
    return "\n".join(lines) + "\n"


def make_entry(
    name: str,
    usage_count: int = 0,
    last_used: datetime | None = None,
    app_id: str | None = None,
) -> AppEntry:
    slug = name.lower().replace(" ", "-")
    return AppEntry(
        id=app_id or f"id-{slug}",
        name=name,
        exec=slug,
        source_path=f"/usr/share/applications/{slug}.desktop",
        usage_count=usage_count,
        last_used=last_used,
    )


async def eventually(
    predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.05
) -> None:
    """Poll ``predicate`` until it holds; fail the test after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        await asyncio.sleep(interval)
