"""Desktop-entry file parser.

A desktop entry is an INI-like file: ``[Group]`` headers followed by
``Key=Value`` lines. Only the ``[Desktop Entry]`` group matters here. Every
problem with a single file is reported as a ``SkippedEntry`` rather than an
exception, so one bad file can never abort a scan.
"""

from __future__ import annotations

import configparser
import os
import re
from typing import TYPE_CHECKING

from launchindex.models.app import DesktopEntry, SkippedEntry, SkipReason

if TYPE_CHECKING:
    from pathlib import Path

DESKTOP_ENTRY_GROUP = "Desktop Entry"
DESKTOP_FILE_SUFFIX = ".desktop"

# Exec field codes (freedesktop desktop entry format); %% is a literal percent sign.
# A field code takes the whitespace in front of it along when it is removed.
_FIELD_CODE = re.compile(r"(\s*)%([fFuUdDnNickvm%])")

_TRUE_VALUES = frozenset({"true", "1"})


def _new_config_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(
        interpolation=None,
        strict=False,
        delimiters=("=",),
        comment_prefixes=("#",),
        inline_comment_prefixes=None,
        empty_lines_in_values=False,
        default_section="\x00launchindex-defaults",
    )
    # Keys are case-sensitive (Name vs name) in desktop entries.
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    return parser


def _is_true(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUE_VALUES


def clean_exec(value: str) -> str:
    """Strip field codes from an Exec value and expand a leading ``~``."""
    cleaned = _FIELD_CODE.sub(
        lambda m: m.group(1) + "%" if m.group(2) == "%" else "", value
    ).strip()
    head, sep, tail = cleaned.partition(" ")
    if head.startswith("~"):
        head = os.path.expanduser(head)
    return f"{head}{sep}{tail}"


def parse_desktop_entry(data: bytes, path: str | Path) -> DesktopEntry | SkippedEntry:
    """Parse the raw bytes of one desktop-entry file."""
    source_path = str(path)
    text = data.decode("utf-8", errors="replace")

    parser = _new_config_parser()
    try:
        parser.read_string(text, source=source_path)
    except configparser.Error as exc:
        return SkippedEntry(
            source_path=source_path,
            reason=SkipReason.MALFORMED,
            detail=str(exc).splitlines()[0],
        )

    if not parser.has_section(DESKTOP_ENTRY_GROUP):
        return SkippedEntry(source_path=source_path, reason=SkipReason.MISSING_GROUP)
    group = parser[DESKTOP_ENTRY_GROUP]

    entry_type = group.get("Type")
    if entry_type is not None and entry_type.strip() != "Application":
        return SkippedEntry(
            source_path=source_path,
            reason=SkipReason.NOT_APPLICATION,
            detail=entry_type.strip(),
        )
    if _is_true(group.get("Hidden")):
        return SkippedEntry(source_path=source_path, reason=SkipReason.HIDDEN)
    if _is_true(group.get("NoDisplay")):
        return SkippedEntry(source_path=source_path, reason=SkipReason.NO_DISPLAY)

    name = (group.get("Name") or "").strip()
    if not name:
        return SkippedEntry(source_path=source_path, reason=SkipReason.MISSING_NAME)

    exec_cmd = clean_exec(group.get("Exec") or "")
    if not exec_cmd:
        return SkippedEntry(source_path=source_path, reason=SkipReason.MISSING_EXEC)

    icon = (group.get("Icon") or "").strip() or None

    return DesktopEntry(
        name=name,
        exec=exec_cmd,
        icon=icon,
        terminal=_is_true(group.get("Terminal")),
        source_path=source_path,
    )


def read_desktop_entry(path: str | Path) -> DesktopEntry | SkippedEntry:
    """Read and parse one file. An unreadable file is a skip, not an error."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as exc:
        return SkippedEntry(
            source_path=str(path),
            reason=SkipReason.UNREADABLE,
            detail=exc.strerror or type(exc).__name__,
        )
    return parse_desktop_entry(data, path)
