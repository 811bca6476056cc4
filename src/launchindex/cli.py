"""Command-line front end.

    launchindex search QUERY [--limit N] [--json]
    launchindex run ID [--no-launch]
    launchindex scan
    launchindex watch

Results go to stdout, logs to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from launchindex.config import Settings
from launchindex.engine import Engine
from launchindex.errors import LaunchIndexError
from launchindex.launcher import spawn
from launchindex.log import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="launchindex", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    p_search = sub.add_parser("search", help="rank applications against a query")
    p_search.add_argument("query", nargs="?", default="")
    p_search.add_argument("--limit", type=int, default=None)
    p_search.add_argument("--json", action="store_true", help="print results as JSON")

    p_run = sub.add_parser("run", help="record a launch and start the application")
    p_run.add_argument("id")
    p_run.add_argument("--no-launch", action="store_true", help="only record the usage")

    sub.add_parser("scan", help="rescan application directories and update the cache")
    sub.add_parser("watch", help="keep the cache in sync until interrupted")
    return parser


async def _search(settings: Settings, args: argparse.Namespace) -> int:
    async with Engine.open(settings, watch=False) as engine:
        hits = engine.search(args.query, limit=args.limit)
    if args.json:
        print(json.dumps([h.model_dump() for h in hits], indent=2))
    else:
        for hit in hits:
            print(f"{hit.score:8.2f}  {hit.id}  {hit.name}")
    return 0


async def _run(settings: Settings, args: argparse.Namespace) -> int:
    async with Engine.open(settings, watch=False) as engine:
        entry = engine.run(args.id)
    if not args.no_launch:
        try:
            spawn(entry, settings.launcher.terminal_command)
        except (OSError, ValueError) as exc:
            print(f"failed to start {entry.name}: {exc}", file=sys.stderr)
            return 1
    return 0


async def _scan(settings: Settings, args: argparse.Namespace) -> int:
    async with Engine.open(settings, watch=False) as engine:
        print(f"{len(engine.index)} applications indexed")
    return 0


async def _watch(settings: Settings, args: argparse.Namespace) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    async with Engine.open(settings, watch=True):
        await stop.wait()
    return 0


_COMMANDS = {
    "search": _search,
    "run": _run,
    "scan": _scan,
    "watch": _watch,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"invalid configuration:\n{exc}", file=sys.stderr)
        return 2
    configure_logging(settings.logging)

    try:
        return asyncio.run(_COMMANDS[args.command](settings, args))
    except LaunchIndexError as exc:
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return 1
