"""
Trust Radar — Ranking Generator

Materializes a dated, ordered ranking of trust scores per population.

A snapshot ranks the trust records as they stand when it is generated, so
the daily job runs right after the trust sweep and files the result under
that day. Read skew across subjects is accepted.

Snapshots are immutable: once (date, population) exists, generate() returns
it unchanged. If a fresh computation would differ (records recomputed
since), the mismatch is logged and the stored snapshot still wins, so the
same date always yields the same ranking.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_radar.config import settings
from trust_radar.engine.ranking import (
    RankingCandidate,
    entries_digest,
    entries_to_json,
    order_candidates,
)
from trust_radar.models.ranking_snapshot import RankingSnapshot
from trust_radar.models.scores import TrustScore
from trust_radar.utils.clock import utcnow

logger = structlog.get_logger(__name__)


def configured_populations() -> list[str]:
    return [p.strip() for p in settings.RANKING_POPULATIONS.split(",") if p.strip()]


class RankingGenerator:
    """Builds and stores ranking snapshots."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
        max_entries: int | None = None,
        min_score: int | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.max_entries = max_entries if max_entries is not None else settings.RANKING_MAX_ENTRIES
        self.min_score = min_score if min_score is not None else settings.RANKING_MIN_SCORE

    async def _candidates(self, population: str) -> list[RankingCandidate]:
        stmt = select(TrustScore.subject_id, TrustScore.score).where(
            TrustScore.population == population
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [RankingCandidate(subject_id=row.subject_id, score=row.score) for row in rows]

    async def get(self, snapshot_date: date, population: str) -> RankingSnapshot | None:
        async with self.session_factory() as session:
            return await session.get(RankingSnapshot, (snapshot_date, population))

    async def generate(self, snapshot_date: date, population: str) -> RankingSnapshot:
        """
        Generate the (snapshot_date, population) ranking, or return the stored one.

        Args:
            snapshot_date: UTC day the snapshot is filed under.
            population: Category being ranked.
        """
        read_at = self.clock()
        entries = order_candidates(
            await self._candidates(population),
            min_score=self.min_score,
            max_entries=self.max_entries,
        )
        digest = entries_digest(entries)

        existing = await self.get(snapshot_date, population)
        if existing is not None:
            if existing.input_digest != digest:
                logger.warning(
                    "ranking_snapshot_inputs_changed",
                    snapshot_date=snapshot_date.isoformat(),
                    population=population,
                    stored_digest=existing.input_digest,
                    fresh_digest=digest,
                )
            return existing

        snapshot = RankingSnapshot(
            snapshot_date=snapshot_date,
            population=population,
            entries=entries_to_json(entries),
            entry_count=len(entries),
            input_digest=digest,
            cutoff_at=read_at,
            generated_at=self.clock(),
        )
        async with self.session_factory() as session:
            session.add(snapshot)
            try:
                await session.commit()
            except IntegrityError:
                # Another generator wrote the same day first
                await session.rollback()
                stored = await session.get(RankingSnapshot, (snapshot_date, population))
                if stored is not None:
                    return stored
                raise

        logger.info(
            "ranking_snapshot_generated",
            snapshot_date=snapshot_date.isoformat(),
            population=population,
            entry_count=len(entries),
            input_digest=digest,
        )
        return snapshot

    async def populations(self) -> list[str]:
        """Populations present in trust records plus the configured ones."""
        async with self.session_factory() as session:
            present = (await session.execute(select(TrustScore.population).distinct())).scalars().all()
        return sorted(set(present) | set(configured_populations()))

    async def generate_all(self, snapshot_date: date) -> list[RankingSnapshot]:
        return [await self.generate(snapshot_date, p) for p in await self.populations()]
