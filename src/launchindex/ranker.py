"""Fuzzy ranking of index entries.

Scoring works in two parts:

* ``fuzzy_score`` requires the query to be a case-insensitive subsequence of
  the entry name (checked with rapidfuzz's LCS similarity) and then scores how
  well it fits with ``fuzz.partial_ratio`` (0-100). A name that starts with the
  query earns ``start_bonus``; a query that spells the name's word starts
  ("vsc" for "Visual Studio Code", "ls" for "LibreSuite") earns
  ``boundary_bonus``. No subsequence means no score, and the entry is excluded.
* ``usage_bonus`` grows with ``log2(1 + usage_count)`` so frequently launched
  apps drift upward without drowning out a clearly better text match.

The final order is a total order (score, usage, recency, name, id), so
identical queries against an identical index always return identical lists.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime

from rapidfuzz import fuzz, utils
from rapidfuzz.distance import LCSseq

from launchindex.config import RankingSettings
from launchindex.models.app import AppEntry
from launchindex.models.search import SearchResult

_SEPARATORS = frozenset(" -_./:()[]+")
_NEG_INF = float("-inf")


def _is_subsequence(pattern: str, text: str) -> bool:
    return LCSseq.similarity(pattern, text) == len(pattern)


def _word_starts(text: str) -> str:
    """First letter of every word, camelCase hump and digit run in ``text``."""
    starts = []
    for j, cur in enumerate(text):
        if not cur.isalnum():
            continue
        if j == 0:
            starts.append(cur)
            continue
        prev = text[j - 1]
        if (
            prev in _SEPARATORS
            or (prev.islower() and cur.isupper())
            or (not prev.isdigit() and cur.isdigit())
        ):
            starts.append(cur)
    return utils.default_process("".join(starts))


def fuzzy_score(pattern: str, text: str, tuning: RankingSettings | None = None) -> int | None:
    """Match score of ``pattern`` against ``text``.

    Both sides go through ``rapidfuzz.utils.default_process`` (lowercased,
    punctuation folded to spaces) so they are compared under one
    normalisation. Returns None when ``pattern`` is not a subsequence of
    ``text`` or the score is below ``tuning.min_score``.
    """
    tuning = tuning or RankingSettings()
    if not pattern:
        return 0

    p = utils.default_process(pattern)
    t = utils.default_process(text)
    if not p or len(p) > len(t) or not _is_subsequence(p, t):
        return None

    score = fuzz.partial_ratio(p, t)
    if t.startswith(p):
        score += tuning.start_bonus
    if " " not in p and _is_subsequence(p, _word_starts(text)):
        score += tuning.boundary_bonus

    result = round(score)
    if result < tuning.min_score:
        return None
    return result


def usage_bonus(entry: AppEntry, tuning: RankingSettings | None = None) -> float:
    tuning = tuning or RankingSettings()
    if entry.usage_count <= 0 or tuning.usage_weight == 0:
        return 0.0
    return round(tuning.usage_weight * math.log2(1 + entry.usage_count), 3)


def _last_used_key(value: datetime | None) -> float:
    return value.timestamp() if value is not None else _NEG_INF


def _sort_key(result: SearchResult) -> tuple[float, int, float, str, str]:
    entry = result.entry
    return (
        -result.score,
        -entry.usage_count,
        -_last_used_key(entry.last_used),
        entry.name.casefold(),
        entry.id,
    )


def rank(
    query: str,
    entries: Iterable[AppEntry],
    tuning: RankingSettings | None = None,
    limit: int | None = None,
) -> list[SearchResult]:
    """Rank ``entries`` against ``query``; an empty query ranks by usage alone."""
    tuning = tuning or RankingSettings()
    if limit is not None and limit < 0:
        raise ValueError("limit must be >= 0")
    query = query.strip()

    results: list[SearchResult] = []
    if not query:
        results = [SearchResult(entry=e, score=usage_bonus(e, tuning)) for e in entries]
    else:
        for entry in entries:
            score = fuzzy_score(query, entry.name, tuning)
            if score is None:
                continue
            results.append(SearchResult(entry=entry, score=score + usage_bonus(entry, tuning)))

    results.sort(key=_sort_key)
    if limit is None:
        limit = tuning.max_results
    if limit is not None:
        results = results[:limit]
    return results
