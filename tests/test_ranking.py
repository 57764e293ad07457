"""Tests for deterministic ranking order."""

from __future__ import annotations

from trust_radar.engine.ranking import RankingCandidate, entries_digest, order_candidates


def test_orders_by_score_descending() -> None:
    entries = order_candidates([
        RankingCandidate("b", 60),
        RankingCandidate("a", 90),
        RankingCandidate("c", 75),
    ])

    assert [e.subject_id for e in entries] == ["a", "c", "b"]
    assert [e.rank for e in entries] == [1, 2, 3]


def test_ties_broken_by_lower_subject_id() -> None:
    """Equal scores never share or swap ranks: the lower id wins."""
    entries = order_candidates([
        RankingCandidate("zed", 80),
        RankingCandidate("amy", 80),
        RankingCandidate("kim", 80),
    ])

    assert [(e.subject_id, e.rank) for e in entries] == [("amy", 1), ("kim", 2), ("zed", 3)]


def test_input_order_does_not_matter() -> None:
    candidates = [RankingCandidate(f"s-{i:02d}", (i * 37) % 101) for i in range(30)]
    forward = order_candidates(candidates)
    backward = order_candidates(list(reversed(candidates)))

    assert forward == backward
    assert entries_digest(forward) == entries_digest(backward)


def test_min_score_and_max_entries() -> None:
    entries = order_candidates(
        [RankingCandidate("a", 10), RankingCandidate("b", 55), RankingCandidate("c", 70), RankingCandidate("d", 50)],
        min_score=50,
        max_entries=2,
    )

    assert [e.subject_id for e in entries] == ["c", "b"]


def test_digest_changes_with_entries() -> None:
    first = order_candidates([RankingCandidate("a", 90), RankingCandidate("b", 80)])
    second = order_candidates([RankingCandidate("a", 90), RankingCandidate("b", 81)])

    assert len(entries_digest(first)) == 64
    assert entries_digest(first) != entries_digest(second)


def test_empty_population_yields_empty_ranking() -> None:
    assert order_candidates([]) == []
