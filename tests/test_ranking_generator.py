"""
Tests for ranking snapshot generation.

Trust records are inserted directly so each test controls scores,
populations and recalculation times exactly.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from trust_radar.aggregation.ranking_generator import RankingGenerator
from trust_radar.models.scores import TrustScore


DAY = date(2026, 2, 28)
DURING_DAY = datetime(2026, 2, 28, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def generator(session_factory, now) -> RankingGenerator:
    return RankingGenerator(session_factory, clock=lambda: now, max_entries=100, min_score=0)


@pytest.fixture
def seed_trust(session_factory):
    async def _seed(subject_id, score, population="creators", recalculated_at=DURING_DAY):
        async with session_factory() as session:
            existing = await session.get(TrustScore, subject_id)
            if existing is None:
                session.add(TrustScore(
                    subject_id=subject_id,
                    population=population,
                    score=score,
                    quality=score,
                    reliability=score,
                    safety=score,
                    payout=score,
                    tier="GOOD",
                    recalculated_at=recalculated_at,
                    policy_version="v1",
                    version=1,
                ))
            else:
                existing.score = score
                existing.recalculated_at = recalculated_at
                existing.version += 1
            await session.commit()

    return _seed


class TestGenerate:
    @pytest.mark.asyncio
    async def test_orders_entries_with_tie_break(self, generator, seed_trust):
        await seed_trust("c-zed", 80)
        await seed_trust("c-amy", 80)
        await seed_trust("c-bob", 92)

        snapshot = await generator.generate(DAY, "creators")

        assert [(e["subject_id"], e["rank"]) for e in snapshot.entries] == [
            ("c-bob", 1),
            ("c-amy", 2),
            ("c-zed", 3),
        ]
        assert snapshot.entry_count == 3
        assert len(snapshot.input_digest) == 64

    @pytest.mark.asyncio
    async def test_generate_twice_returns_identical_snapshot(self, generator, seed_trust):
        await seed_trust("c-1", 70)
        await seed_trust("c-2", 75)

        first = await generator.generate(DAY, "creators")
        second = await generator.generate(DAY, "creators")

        assert second.entries == first.entries
        assert second.input_digest == first.input_digest

    @pytest.mark.asyncio
    async def test_snapshot_is_immutable_once_written(self, generator, seed_trust):
        await seed_trust("c-1", 70)
        await seed_trust("c-2", 75)
        first = await generator.generate(DAY, "creators")

        # Late recompute that would reorder the day
        await seed_trust("c-1", 99, recalculated_at=datetime(2026, 2, 28, 22, 0, tzinfo=timezone.utc))
        again = await generator.generate(DAY, "creators")

        assert again.entries == first.entries
        assert again.entries[0]["subject_id"] == "c-2"

    @pytest.mark.asyncio
    async def test_ranks_records_as_they_stand(self, generator, seed_trust, now):
        await seed_trust("c-early", 60)
        # Refreshed after the ranked day ended, still ranked
        await seed_trust("c-late", 90, recalculated_at=datetime(2026, 3, 1, 0, 0, 1, tzinfo=timezone.utc))

        snapshot = await generator.generate(DAY, "creators")

        assert [e["subject_id"] for e in snapshot.entries] == ["c-late", "c-early"]
        assert snapshot.cutoff_at == now

    @pytest.mark.asyncio
    async def test_populations_ranked_separately(self, generator, seed_trust):
        await seed_trust("c-1", 70, population="creators")
        await seed_trust("k-1", 95, population="coaches")

        snapshot = await generator.generate(DAY, "creators")

        assert [e["subject_id"] for e in snapshot.entries] == ["c-1"]

    @pytest.mark.asyncio
    async def test_empty_population_still_gets_snapshot(self, generator):
        snapshot = await generator.generate(DAY, "creators")
        assert snapshot.entries == []
        assert snapshot.entry_count == 0

    @pytest.mark.asyncio
    async def test_max_entries_and_min_score(self, session_factory, seed_trust, now):
        for i, score in enumerate([10, 40, 55, 80, 95]):
            await seed_trust(f"c-{i}", score)
        generator = RankingGenerator(session_factory, clock=lambda: now, max_entries=2, min_score=50)

        snapshot = await generator.generate(DAY, "creators")

        assert [e["score"] for e in snapshot.entries] == [95, 80]


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_missing_snapshot(self, generator):
        assert await generator.get(DAY, "creators") is None

    @pytest.mark.asyncio
    async def test_generate_all_covers_configured_and_present(self, generator, seed_trust):
        await seed_trust("k-1", 88, population="coaches")

        snapshots = await generator.generate_all(DAY)

        assert sorted(s.population for s in snapshots) == ["coaches", "creators"]
        stored = await generator.get(DAY, "coaches")
        assert stored.entries[0]["subject_id"] == "k-1"

    @pytest.mark.asyncio
    async def test_previous_day_snapshot_untouched_by_new_day(self, generator, seed_trust):
        await seed_trust("c-1", 70)
        older = await generator.generate(DAY, "creators")

        await seed_trust("c-2", 90, recalculated_at=datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc))
        newer = await generator.generate(DAY + timedelta(days=1), "creators")

        assert [e["subject_id"] for e in newer.entries] == ["c-2", "c-1"]
        assert (await generator.get(DAY, "creators")).entries == older.entries
