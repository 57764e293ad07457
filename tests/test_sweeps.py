"""
Tests for the periodic job handlers, run through a real JobRegistry.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from trust_radar.aggregation.ranking_generator import RankingGenerator
from trust_radar.aggregation.risk_aggregator import RiskAggregator
from trust_radar.aggregation.trust_aggregator import TrustAggregator
from trust_radar.components import build_components
from trust_radar.config import JobStatus, RiskLevel
from trust_radar.models.message_fingerprint import MessageFingerprint
from trust_radar.pipeline.jobs import JobRegistry
from trust_radar.pipeline.scheduler import Scheduler
from trust_radar.pipeline.sweeps import Sweeps

JOB_NAMES = ["risk_sweep", "trust_sweep", "ranking_generation", "signal_retention", "fingerprint_prune"]


@pytest.fixture
def risk(store, session_factory, policy, now) -> RiskAggregator:
    return RiskAggregator(store, session_factory, policy=policy, clock=lambda: now)


@pytest.fixture
def trust(kpi_reader, session_factory, risk, now) -> TrustAggregator:
    return TrustAggregator(kpi_reader, session_factory, risk, clock=lambda: now)


@pytest.fixture
def registry(session_factory, store, risk, trust, now) -> JobRegistry:
    ranking = RankingGenerator(session_factory, clock=lambda: now)
    registry = JobRegistry(session_factory, clock=lambda: now)
    Sweeps(session_factory, store, risk, trust, ranking, max_parallelism=2).register_all(registry)
    return registry


class TestRegistration:
    def test_every_job_registered(self, registry):
        assert registry.names() == JOB_NAMES

    @pytest.mark.asyncio
    async def test_all_jobs_due_on_first_start(self, registry):
        assert await registry.due_jobs() == JOB_NAMES


class TestRiskSweep:
    @pytest.mark.asyncio
    async def test_scores_subjects_with_recent_signals(self, registry, risk, add_signal, now):
        await add_signal("c-1", now - timedelta(minutes=30), severity=5)
        await add_signal("c-2", now - timedelta(minutes=10), severity=2)

        report = await registry.run("risk_sweep")

        assert report.status == JobStatus.SUCCEEDED
        assert report.processed == 2
        assert (await risk.get("c-1")).score == 40
        assert (await risk.get("c-2")).level == RiskLevel.LOW.value

    @pytest.mark.asyncio
    async def test_old_signals_outside_first_lookback_skipped(self, registry, risk, add_signal, now):
        await add_signal("c-old", now - timedelta(days=3))

        report = await registry.run("risk_sweep")

        assert report.processed == 0
        assert await risk.get("c-old") is None


class TestTrustSweep:
    @pytest.mark.asyncio
    async def test_scores_active_subjects(self, registry, trust, kpi_reader, strong_kpi_factory):
        kpi_reader.active = ["c-1", "c-2"]
        kpi_reader.snapshots["c-1"] = strong_kpi_factory("c-1")

        report = await registry.run("trust_sweep")

        assert report.status == JobStatus.SUCCEEDED
        assert report.failed == 0
        assert (await trust.get("c-1")).tier == "EXCELLENT"
        # No KPIs upstream, nothing stored
        assert await trust.get("c-2") is None


class TestRankingGeneration:
    @pytest.mark.asyncio
    async def test_ranks_the_run_day(self, registry, session_factory, kpi_reader, strong_kpi_factory, now):
        kpi_reader.active = ["c-1"]
        kpi_reader.snapshots["c-1"] = strong_kpi_factory("c-1")
        await registry.run("trust_sweep")

        report = await registry.run("ranking_generation")

        assert report.cursor == now.date().isoformat()
        ranking = RankingGenerator(session_factory, clock=lambda: now)
        snapshot = await ranking.get(now.date(), "creators")
        assert [e["subject_id"] for e in snapshot.entries] == ["c-1"]

    @pytest.mark.asyncio
    async def test_first_tick_ranks_freshly_swept_subjects(
        self, registry, session_factory, kpi_reader, strong_kpi_factory, now
    ):
        kpi_reader.active = ["c-1", "c-2", "c-3"]
        for subject_id in kpi_reader.active:
            kpi_reader.snapshots[subject_id] = strong_kpi_factory(subject_id)

        ran = await Scheduler(registry, tick_seconds=0.01).run_due_jobs()

        assert ran == JOB_NAMES
        snapshot = await RankingGenerator(session_factory).get(now.date(), "creators")
        assert snapshot.entry_count == 3
        assert [e["subject_id"] for e in snapshot.entries] == ["c-1", "c-2", "c-3"]
        assert all(e["score"] >= 85 for e in snapshot.entries)

    @pytest.mark.asyncio
    async def test_later_sweeps_do_not_rewrite_the_day(
        self, registry, session_factory, kpi_reader, strong_kpi_factory, now
    ):
        kpi_reader.active = ["c-1"]
        kpi_reader.snapshots["c-1"] = strong_kpi_factory("c-1")
        await Scheduler(registry, tick_seconds=0.01).run_due_jobs()

        kpi_reader.active = ["c-1", "c-2"]
        kpi_reader.snapshots["c-2"] = strong_kpi_factory("c-2")
        await registry.run("trust_sweep")
        await registry.run("ranking_generation")

        snapshot = await RankingGenerator(session_factory).get(now.date(), "creators")
        assert [e["subject_id"] for e in snapshot.entries] == ["c-1"]


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_signal_retention_deletes_expired_history(self, registry, store, add_signal, now):
        await add_signal("c-1", now - timedelta(days=400))
        await add_signal("c-1", now - timedelta(days=10))

        report = await registry.run("signal_retention")

        assert report.processed == 1
        remaining = await store.history("c-1", now - timedelta(days=1000))
        assert len(remaining) == 1

    @pytest.mark.asyncio
    async def test_fingerprint_prune_deletes_expired_rows(self, registry, session_factory, now):
        async with session_factory() as session:
            session.add_all([
                MessageFingerprint(
                    subject_id="c-1",
                    message_hash="a" * 64,
                    conversation_ids=["x"],
                    window_started_at=now - timedelta(hours=2),
                    expires_at=now - timedelta(hours=1),
                ),
                MessageFingerprint(
                    subject_id="c-1",
                    message_hash="b" * 64,
                    conversation_ids=["y"],
                    window_started_at=now,
                    expires_at=now + timedelta(hours=1),
                ),
            ])
            await session.commit()

        report = await registry.run("fingerprint_prune")

        assert report.processed == 1
        async with session_factory() as session:
            assert await session.get(MessageFingerprint, ("c-1", "a" * 64)) is None
            assert await session.get(MessageFingerprint, ("c-1", "b" * 64)) is not None


class TestBuildComponents:
    def test_wires_every_job(self, session_factory, activity, kpi_reader, policy):
        components = build_components(session_factory, activity, kpi_reader, policy=policy)

        assert components.registry.names() == JOB_NAMES
        assert components.query.risk is components.risk
        assert components.detectors.emitter is components.emitter
