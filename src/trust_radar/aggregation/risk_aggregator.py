"""
Trust Radar — Risk Aggregator

Replays a subject's signal history (bounded by the retention window) into
a decayed risk score and writes it with compare-and-set. Recomputing twice
with the same history and reference time yields the same record values.

Triggers:
- best-effort after each new signal (SignalEmitter.on_signal_written)
- the hourly risk sweep over subjects with recent signals
- on-demand admin recompute
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
from trust_radar.config import settings
from trust_radar.engine.policy import ScoringPolicy, load_policy
from trust_radar.engine.risk import compute_risk
from trust_radar.models.scores import RiskScore
from trust_radar.signals.store import SignalStore
from trust_radar.utils.clock import utcnow

logger = structlog.get_logger(__name__)


class RiskAggregator:
    """Recomputes and persists risk records."""

    def __init__(
        self,
        store: SignalStore,
        session_factory: async_sessionmaker[AsyncSession],
        policy: ScoringPolicy | None = None,
        locks: SubjectLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.session_factory = session_factory
        self.policy = policy or load_policy()
        self.locks = locks or SubjectLocks()
        self.clock = clock

    async def recompute(self, subject_id: str) -> RiskScore:
        """
        Recompute and store the risk record for one subject.

        Returns:
            The record as written (transient RiskScore instance).

        Raises:
            ConcurrentUpdateError: CAS lost CAS_MAX_ATTEMPTS times.
        """
        previous_level: str | None = None

        async def attempt() -> RiskScore | None:
            nonlocal previous_level
            now = self.clock()
            current = await load_record(self.session_factory, RiskScore, subject_id)
            previous_level = current.level if current is not None else None

            history = await self.store.history(
                subject_id, since=now - timedelta(days=settings.SIGNAL_RETENTION_DAYS)
            )
            result = compute_risk(history, self.policy, now)
            values = {
                "score": result.score,
                "level": result.level.value,
                "signal_counts": result.signal_counts,
                "last_signal_at": result.last_signal_at,
                "recalculated_at": now,
                "policy_version": self.policy.version,
            }
            version = await compare_and_set(
                self.session_factory,
                RiskScore,
                subject_id,
                current.version if current is not None else None,
                values,
            )
            if version is None:
                return None
            return RiskScore(subject_id=subject_id, version=version, **values)

        async with self.locks.hold(subject_id):
            record = await retry_on_conflict(subject_id, attempt)

        if previous_level is not None and previous_level != record.level:
            logger.info(
                "risk_level_changed",
                subject_id=subject_id,
                previous_level=previous_level,
                level=record.level,
                score=record.score,
            )
        logger.info(
            "risk_recompute_complete",
            subject_id=subject_id,
            score=record.score,
            level=record.level,
            signal_count=sum(record.signal_counts.values()),
            policy_version=record.policy_version,
        )
        return record

    async def sweep_candidates(self, since: datetime) -> list[str]:
        """
        Subjects with a signal detected since `since`, plus subjects whose
        stored score is still above zero (their weights keep decaying).
        """
        recent = await self.store.subjects_with_signals_since(since)
        async with self.session_factory() as session:
            scored = (
                await session.execute(select(RiskScore.subject_id).where(RiskScore.score > 0))
            ).scalars().all()
        return sorted(set(recent) | set(scored))

    async def get(self, subject_id: str) -> RiskScore | None:
        return await load_record(self.session_factory, RiskScore, subject_id)
