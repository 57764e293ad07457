"""
Trust Radar — Signal Store

Append-only access to the `signals` table. The only mutation besides
append is retention pruning. Appends are safe for any number of concurrent
writers: deduplication relies on the unique idempotency key, so a losing
writer simply gets `inserted=False`.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, NamedTuple

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_radar.config import SignalSource, SignalType, settings
from trust_radar.models.signal import Signal

logger = structlog.get_logger(__name__)


class SignalDraft(NamedTuple):
    """A validated signal waiting to be appended."""
    subject_id: str
    source: SignalSource
    signal_type: SignalType
    severity: int
    context_ref: str | None
    metadata: dict[str, Any]
    idempotency_key: str
    detected_at: datetime


class AppendResult(NamedTuple):
    signal_id: uuid.UUID | None
    inserted: bool


class SignalStore:
    """Append, query and prune signals."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, draft: SignalDraft) -> AppendResult:
        """
        Insert one signal unless its idempotency key already exists.

        Returns:
            AppendResult(signal_id, inserted). A duplicate yields
            (existing_id, False).
        """
        signal = Signal(
            id=uuid.uuid4(),
            subject_id=draft.subject_id,
            source=draft.source.value,
            signal_type=draft.signal_type.value,
            severity=draft.severity,
            context_ref=draft.context_ref,
            signal_metadata=draft.metadata,
            idempotency_key=draft.idempotency_key,
            detected_at=draft.detected_at,
        )
        async with self.session_factory() as session:
            session.add(signal)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await session.scalar(
                    select(Signal.id).where(Signal.idempotency_key == draft.idempotency_key)
                )
                logger.debug(
                    "signal_deduplicated",
                    subject_id=draft.subject_id,
                    signal_type=draft.signal_type.value,
                    existing_id=str(existing) if existing else None,
                )
                return AppendResult(signal_id=existing, inserted=False)

        logger.info(
            "signal_appended",
            signal_id=str(signal.id),
            subject_id=draft.subject_id,
            signal_type=draft.signal_type.value,
            severity=draft.severity,
            source=draft.source.value,
        )
        return AppendResult(signal_id=signal.id, inserted=True)

    async def history(self, subject_id: str, since: datetime | None = None) -> list[Signal]:
        """A subject's signals, oldest first, optionally bounded below by `since`."""
        stmt = select(Signal).where(Signal.subject_id == subject_id)
        if since is not None:
            stmt = stmt.where(Signal.detected_at >= since)
        stmt = stmt.order_by(Signal.detected_at, Signal.id)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def strongest_near(
        self,
        subject_id: str,
        signal_type: SignalType,
        around: datetime,
        window: timedelta,
    ) -> Signal | None:
        """Highest-severity signal of this type detected within `window` of `around`."""
        stmt = (
            select(Signal)
            .where(
                Signal.subject_id == subject_id,
                Signal.signal_type == signal_type.value,
                Signal.detected_at > around - window,
                Signal.detected_at < around + window,
            )
            .order_by(Signal.severity.desc(), Signal.detected_at.desc())
            .limit(1)
        )
        async with self.session_factory() as session:
            return await session.scalar(stmt)

    async def list_signals(
        self,
        subject_id: str | None = None,
        source: SignalSource | None = None,
        signal_type: SignalType | None = None,
        min_severity: int | None = None,
        max_severity: int | None = None,
        detected_from: datetime | None = None,
        detected_to: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[Signal]:
        """Filtered page of signals, newest first (ties broken by id)."""
        stmt = select(Signal)
        if subject_id is not None:
            stmt = stmt.where(Signal.subject_id == subject_id)
        if source is not None:
            stmt = stmt.where(Signal.source == source.value)
        if signal_type is not None:
            stmt = stmt.where(Signal.signal_type == signal_type.value)
        if min_severity is not None:
            stmt = stmt.where(Signal.severity >= min_severity)
        if max_severity is not None:
            stmt = stmt.where(Signal.severity <= max_severity)
        if detected_from is not None:
            stmt = stmt.where(Signal.detected_at >= detected_from)
        if detected_to is not None:
            stmt = stmt.where(Signal.detected_at < detected_to)
        stmt = stmt.order_by(Signal.detected_at.desc(), Signal.id).offset(offset).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def subjects_with_signals_since(self, since: datetime) -> list[str]:
        """Distinct subjects with at least one signal detected at or after `since`."""
        stmt = (
            select(Signal.subject_id)
            .where(Signal.detected_at >= since)
            .distinct()
            .order_by(Signal.subject_id)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def has_signals(self, subject_id: str) -> bool:
        async with self.session_factory() as session:
            count = await session.scalar(
                select(func.count()).select_from(Signal).where(Signal.subject_id == subject_id)
            )
        return bool(count)

    async def prune_older_than(self, cutoff: datetime, batch_size: int | None = None) -> int:
        """
        Delete signals detected before `cutoff`, in batches.

        Each batch commits on its own so a long prune never holds one huge
        transaction. Returns the number of rows deleted.
        """
        size = batch_size or settings.PRUNE_BATCH_SIZE
        total = 0
        while True:
            async with self.session_factory() as session:
                ids = (
                    await session.execute(
                        select(Signal.id).where(Signal.detected_at < cutoff).limit(size)
                    )
                ).scalars().all()
                if not ids:
                    break
                await session.execute(delete(Signal).where(Signal.id.in_(ids)))
                await session.commit()
            total += len(ids)
            if len(ids) < size:
                break

        logger.info("signals_pruned", cutoff=cutoff.isoformat(), deleted=total)
        return total
