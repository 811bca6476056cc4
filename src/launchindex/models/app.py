from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class DesktopEntry(BaseModel):
    """Fields parsed from one desktop-entry file, before an id is assigned."""

    model_config = ConfigDict(frozen=True)

    name: str
    exec: str
    icon: str | None = None
    terminal: bool = False
    source_path: str


class SkipReason(StrEnum):
    UNREADABLE = "unreadable"
    MALFORMED = "malformed"
    MISSING_GROUP = "missing_group"
    NOT_APPLICATION = "not_application"
    HIDDEN = "hidden"
    NO_DISPLAY = "no_display"
    MISSING_NAME = "missing_name"
    MISSING_EXEC = "missing_exec"


class SkippedEntry(BaseModel):
    """A file that is not (or no longer) a launchable application."""

    model_config = ConfigDict(frozen=True)

    source_path: str
    reason: SkipReason
    detail: str = ""


class AppEntry(BaseModel):
    """One launchable application in the index.

    Instances are immutable; updates go through ``model_copy(update=...)`` so a
    published index snapshot never changes under a reader.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    exec: str
    icon: str | None = None
    terminal: bool = False
    source_path: str
    usage_count: int = 0
    last_used: datetime | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v

    @field_validator("usage_count")
    @classmethod
    def validate_usage_count(cls, v: int) -> int:
        if v < 0:
            raise ValueError("usage_count must be >= 0")
        return v

    def with_fields_from(self, parsed: DesktopEntry) -> AppEntry:
        """Return a copy carrying the parsed fields; id and usage are kept."""
        return self.model_copy(
            update={
                "name": parsed.name,
                "exec": parsed.exec,
                "icon": parsed.icon,
                "terminal": parsed.terminal,
                "source_path": parsed.source_path,
            }
        )

    def same_fields_as(self, parsed: DesktopEntry) -> bool:
        return (
            self.name == parsed.name
            and self.exec == parsed.exec
            and self.icon == parsed.icon
            and self.terminal == parsed.terminal
            and self.source_path == parsed.source_path
        )
