"""
Trust Radar — Periodic jobs

Handlers for the registered jobs:
- risk_sweep          hourly, subjects with new signals (or decaying scores)
- trust_sweep         daily, active subjects plus every scored subject
- ranking_generation  daily, right after trust_sweep, filed under the run's UTC day
- signal_retention    daily, delete signals older than SIGNAL_RETENTION_DAYS
- fingerprint_prune   hourly, delete expired copy-paste fingerprints
"""

from __future__ import annotations

from datetime import timedelta

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_radar.aggregation.ranking_generator import RankingGenerator
from trust_radar.aggregation.risk_aggregator import RiskAggregator
from trust_radar.aggregation.trust_aggregator import TrustAggregator
from trust_radar.config import JobStatus, settings
from trust_radar.models.message_fingerprint import MessageFingerprint
from trust_radar.pipeline.batch import BatchRunner
from trust_radar.pipeline.jobs import Job, JobContext, JobRegistry, JobReport
from trust_radar.signals.store import SignalStore

logger = structlog.get_logger(__name__)


class Sweeps:
    """Job handlers bound to the aggregators they drive."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: SignalStore,
        risk: RiskAggregator,
        trust: TrustAggregator,
        ranking: RankingGenerator,
        max_parallelism: int | None = None,
    ):
        self.session_factory = session_factory
        self.store = store
        self.risk = risk
        self.trust = trust
        self.ranking = ranking
        self.max_parallelism = max_parallelism

    def _batch(self, context: JobContext) -> BatchRunner:
        return BatchRunner(
            max_parallelism=self.max_parallelism,
            deadline_seconds=context.deadline_seconds,
        )

    async def risk_sweep(self, context: JobContext) -> JobReport:
        since = context.last_success_at or (
            context.started_at - timedelta(hours=settings.RISK_SWEEP_LOOKBACK_HOURS)
        )
        subjects = await self.risk.sweep_candidates(since)
        outcome = await self._batch(context).run("risk_sweep", subjects, self.risk.recompute)
        return JobReport(
            status=outcome.status,
            processed=outcome.processed,
            failed=outcome.failed,
            cursor=outcome.cursor,
        )

    async def trust_sweep(self, context: JobContext) -> JobReport:
        subjects = await self.trust.sweep_candidates()
        outcome = await self._batch(context).run("trust_sweep", subjects, self.trust.recompute)
        return JobReport(
            status=outcome.status,
            processed=outcome.processed,
            failed=outcome.failed,
            cursor=outcome.cursor,
        )

    async def ranking_generation(self, context: JobContext) -> JobReport:
        snapshot_date = context.started_at.date()
        snapshots = await self.ranking.generate_all(snapshot_date)
        return JobReport(
            status=JobStatus.SUCCEEDED,
            processed=len(snapshots),
            cursor=snapshot_date.isoformat(),
        )

    async def signal_retention(self, context: JobContext) -> JobReport:
        cutoff = context.started_at - timedelta(days=settings.SIGNAL_RETENTION_DAYS)
        deleted = await self.store.prune_older_than(cutoff, settings.PRUNE_BATCH_SIZE)
        return JobReport(status=JobStatus.SUCCEEDED, processed=deleted)

    async def fingerprint_prune(self, context: JobContext) -> JobReport:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(MessageFingerprint).where(MessageFingerprint.expires_at < context.started_at)
            )
            await session.commit()
        logger.info("fingerprints_pruned", deleted=result.rowcount)
        return JobReport(status=JobStatus.SUCCEEDED, processed=result.rowcount or 0)

    def register_all(self, registry: JobRegistry) -> JobRegistry:
        registry.register(Job(
            "risk_sweep",
            timedelta(minutes=settings.RISK_SWEEP_INTERVAL_MINUTES),
            self.risk_sweep,
        ))
        registry.register(Job(
            "trust_sweep",
            timedelta(hours=settings.TRUST_SWEEP_INTERVAL_HOURS),
            self.trust_sweep,
        ))
        registry.register(Job(
            "ranking_generation",
            timedelta(hours=settings.RANKING_INTERVAL_HOURS),
            self.ranking_generation,
        ))
        registry.register(Job(
            "signal_retention",
            timedelta(hours=settings.SIGNAL_RETENTION_INTERVAL_HOURS),
            self.signal_retention,
        ))
        registry.register(Job(
            "fingerprint_prune",
            timedelta(minutes=settings.FINGERPRINT_PRUNE_INTERVAL_MINUTES),
            self.fingerprint_prune,
        ))
        return registry
