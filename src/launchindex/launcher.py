"""Spawning the selected application.

Kept deliberately thin: the front end calls ``Engine.run`` to record usage and
then hands the returned entry to ``spawn``.
"""

from __future__ import annotations

import shlex
import subprocess
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from launchindex.models.app import AppEntry

log = structlog.get_logger()


def build_command(entry: AppEntry, terminal_command: str = "xterm -e") -> list[str]:
    """argv for ``entry``; terminal apps are wrapped in ``terminal_command``."""
    argv = shlex.split(entry.exec)
    if entry.terminal:
        argv = shlex.split(terminal_command) + argv
    return argv


def spawn(entry: AppEntry, terminal_command: str = "xterm -e") -> subprocess.Popen[bytes]:
    """Start ``entry`` detached from this process.

    Raises ``OSError`` when the executable cannot be started and ``ValueError``
    when the Exec line cannot be split into arguments.
    """
    argv = build_command(entry, terminal_command)
    if not argv:
        raise ValueError(f"empty command for {entry.name!r}")
    log.info("app_spawn", app_id=entry.id, name=entry.name, argv=argv)
    return subprocess.Popen(
        argv,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
