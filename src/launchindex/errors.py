"""Errors surfaced to Engine callers.

Only caller-facing conditions become exceptions. Scan, watch and persistence
problems are logged and absorbed where they happen and never reach this type.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_INPUT = "INVALID_INPUT"
    APP_NOT_FOUND = "APP_NOT_FOUND"
    ENGINE_CLOSED = "ENGINE_CLOSED"


class LaunchIndexError(Exception):
    """Error with a machine-readable code for the front end."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, object]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
