"""
Trust Radar — Trust Aggregator

Combines a subject's KPI snapshot (read-only business views) with its risk
record into four subscores and a composite trust score, then writes the
record with compare-and-set.
Each write also keeps the previous score, its trend and a short score
history.

A subject whose KPI snapshot is unavailable keeps its previous record; a
subject with neither yields None. Source failures propagate so the sweep
can count them and leave the record stale.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_radar.aggregation.records import (
    SubjectLocks,
    compare_and_set,
    load_record,
    retry_on_conflict,
)
from trust_radar.aggregation.risk_aggregator import RiskAggregator
from trust_radar.config import RiskLevel, settings
from trust_radar.engine.policy import ScoringPolicy
from trust_radar.engine.trust import compute_trust, extend_history, trend_for_change
from trust_radar.models.scores import TrustScore
from trust_radar.sources.views import KpiReader
from trust_radar.utils.clock import utcnow

logger = structlog.get_logger(__name__)


class TrustAggregator:
    """Recomputes and persists trust records."""

    def __init__(
        self,
        kpi_reader: KpiReader,
        session_factory: async_sessionmaker[AsyncSession],
        risk: RiskAggregator,
        policy: ScoringPolicy | None = None,
        locks: SubjectLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.kpi_reader = kpi_reader
        self.session_factory = session_factory
        self.risk = risk
        self.policy = policy or risk.policy
        self.locks = locks or SubjectLocks()
        self.clock = clock

    async def _risk_inputs(self, subject_id: str) -> tuple[int, RiskLevel]:
        """Current risk score and level; computed on the spot if never recorded."""
        record = await self.risk.get(subject_id)
        if record is None and await self.risk.store.has_signals(subject_id):
            record = await self.risk.recompute(subject_id)
        if record is None:
            return 0, RiskLevel.LOW
        return record.score, RiskLevel(record.level)

    async def recompute(self, subject_id: str) -> TrustScore | None:
        """
        Recompute and store the trust record for one subject.

        Returns:
            The record as written, the unchanged previous record when no KPI
            snapshot is available, or None for an unknown subject.

        Raises:
            SourceUnavailableError: KPI views unreachable.
            ConcurrentUpdateError: CAS lost CAS_MAX_ATTEMPTS times.
        """
        now = self.clock()
        kpi = await self.kpi_reader.kpi_snapshot(
            subject_id, now - timedelta(days=settings.TRUST_KPI_LOOKBACK_DAYS)
        )
        if kpi is None:
            existing = await load_record(self.session_factory, TrustScore, subject_id)
            logger.info(
                "trust_recompute_skipped",
                subject_id=subject_id,
                reason="no_kpi_snapshot",
                has_record=existing is not None,
            )
            return existing

        risk_score, risk_level = await self._risk_inputs(subject_id)
        result = compute_trust(kpi, risk_score, risk_level, self.policy)

        async def attempt() -> TrustScore | None:
            current = await load_record(self.session_factory, TrustScore, subject_id)
            recalculated_at = self.clock()
            previous = current.score if current is not None else None
            values = {
                "population": result.population,
                "score": result.score,
                "quality": result.subscores.quality,
                "reliability": result.subscores.reliability,
                "safety": result.subscores.safety,
                "payout": result.subscores.payout,
                "tier": result.tier.value,
                "previous_score": previous,
                "trend": trend_for_change(result.score, previous, settings.TRUST_TREND_BAND).value,
                "score_history": extend_history(
                    current.score_history if current is not None else None,
                    result.score,
                    recalculated_at,
                    settings.TRUST_HISTORY_LENGTH,
                ),
                "recalculated_at": recalculated_at,
                "policy_version": self.policy.version,
            }
            version = await compare_and_set(
                self.session_factory,
                TrustScore,
                subject_id,
                current.version if current is not None else None,
                values,
            )
            if version is None:
                return None
            return TrustScore(subject_id=subject_id, version=version, **values)

        async with self.locks.hold(subject_id):
            record = await retry_on_conflict(subject_id, attempt)

        logger.info(
            "trust_recompute_complete",
            subject_id=subject_id,
            score=record.score,
            tier=record.tier,
            trend=record.trend,
            population=record.population,
            risk_score=risk_score,
            **record.subscores,
        )
        return record

    async def sweep_candidates(self) -> list[str]:
        """Subjects active in the KPI lookback plus every subject already scored."""
        since = self.clock() - timedelta(days=settings.TRUST_KPI_LOOKBACK_DAYS)
        active = await self.kpi_reader.active_subjects(since)
        async with self.session_factory() as session:
            scored = (await session.execute(select(TrustScore.subject_id))).scalars().all()
        return sorted(set(active) | set(scored))

    async def get(self, subject_id: str) -> TrustScore | None:
        return await load_record(self.session_factory, TrustScore, subject_id)
