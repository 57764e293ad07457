"""
Trust Radar — Ranking order

Ordering rule: score descending, then subject_id ascending (lower id wins
ties). Ranks are 1-based positions, so tied scores still get distinct,
stable ranks. The digest of the canonical entry list lets a re-run prove
it produced a byte-identical snapshot.
"""

from __future__ import annotations

import hashlib
import json
from typing import Iterable, NamedTuple


class RankingCandidate(NamedTuple):
    subject_id: str
    score: int


class RankingEntry(NamedTuple):
    subject_id: str
    rank: int
    score: int


def order_candidates(
    candidates: Iterable[RankingCandidate],
    min_score: int = 0,
    max_entries: int | None = None,
) -> list[RankingEntry]:
    """
    Deterministically rank candidates.

    Args:
        candidates: (subject_id, score) pairs, any order, no duplicate ids.
        min_score: Candidates below this score are left out.
        max_entries: Keep only the top N entries (None keeps all).

    Returns:
        Ordered list of RankingEntry with rank 1..N.
    """
    eligible = [c for c in candidates if c.score >= min_score]
    eligible.sort(key=lambda c: (-c.score, c.subject_id))
    if max_entries is not None:
        eligible = eligible[:max_entries]
    return [
        RankingEntry(subject_id=c.subject_id, rank=position, score=c.score)
        for position, c in enumerate(eligible, start=1)
    ]


def entries_to_json(entries: list[RankingEntry]) -> list[dict]:
    return [entry._asdict() for entry in entries]


def entries_digest(entries: list[RankingEntry]) -> str:
    """sha256 of the canonical JSON encoding of the entry list."""
    canonical = json.dumps(entries_to_json(entries), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
