from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, field_validator

from launchindex.models.app import AppEntry

MAX_QUERY_LENGTH = 256


class SearchInput(BaseModel):
    query: str = ""
    limit: int | None = None

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        v = v.strip()
        if len(v) > MAX_QUERY_LENGTH:
            raise ValueError(f"query must not exceed {MAX_QUERY_LENGTH} characters")
        return v

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError("limit must be >= 0")
        return v


@dataclass(frozen=True, slots=True)
class SearchResult:
    """Ranker output for one entry. Never persisted."""

    entry: AppEntry
    score: float


class SearchHit(BaseModel):
    """Single result returned by Engine.search."""

    name: str
    icon: str | None
    id: str
    score: float  # blended fuzzy + usage score; ordering, not a contract

    @classmethod
    def from_result(cls, result: SearchResult) -> SearchHit:
        return cls(
            name=result.entry.name,
            icon=result.entry.icon,
            id=result.entry.id,
            score=result.score,
        )
