"""Integration test fixtures.

Provides a fully initialized Engine over a throwaway applications directory
and an environment for running the CLI as a subprocess. Directory and settings
fixtures come from tests/conftest.py.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from launchindex.engine import Engine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from launchindex.config import Settings
    from tests.conftest import DesktopWriter

_SRC_DIR = Path(__file__).resolve().parents[2] / "src"


@pytest.fixture()
def sample_apps(write_desktop: DesktopWriter) -> dict[str, Path]:
    """Firefox, Files and a terminal app (htop) on disk."""
    return {
        "firefox": write_desktop(
            "firefox", name="Firefox", exec_cmd="firefox %u", extra="Icon=firefox"
        ),
        "files": write_desktop(
            "org.gnome.Nautilus", name="Files", exec_cmd="nautilus --new-window %U"
        ),
        "htop": write_desktop("htop", name="htop", exec_cmd="htop", extra="Terminal=true"),
    }


@pytest.fixture()
async def engine(settings: Settings, sample_apps: dict[str, Path]) -> AsyncIterator[Engine]:
    """Engine without live watching; shut down after the test."""
    engine = await Engine.initialize(settings)
    try:
        yield engine
    finally:
        await engine.shutdown()


@pytest.fixture()
def subprocess_env(tmp_path: Path, apps_dir: Path) -> dict[str, str]:
    """Environment for ``python -m launchindex`` isolated from the user's setup."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("LAUNCHINDEX__")}
    pythonpath = [str(_SRC_DIR)]
    if env.get("PYTHONPATH"):
        pythonpath.append(env["PYTHONPATH"])
    env.update(
        {
            "PYTHONPATH": os.pathsep.join(pythonpath),
            "XDG_CONFIG_HOME": str(tmp_path / "config"),
            "XDG_DATA_HOME": str(tmp_path / "share"),
            "LAUNCHINDEX__SCAN__APP_PATHS": json.dumps([str(apps_dir)]),
            "LAUNCHINDEX__CACHE__DB_PATH": str(tmp_path / "data" / "apps.db"),
            "LAUNCHINDEX__CACHE__FLUSH_DELAY_SECONDS": "0",
            "LAUNCHINDEX__WATCH__ENABLED": "false",
        }
    )
    return env
