"""
Trust Radar — Score record writes (single writer per subject)

Risk and trust records are written with optimistic compare-and-set on the
`version` column:

    UPDATE ... SET ..., version = expected + 1
    WHERE subject_id = :id AND version = :expected

A lost race (0 rows updated, or a unique-key violation when two writers
both insert the first row) returns None and the caller re-reads and
recomputes. Within one process, SubjectLocks serializes recomputes of the
same subject so CAS conflicts only happen across processes.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_radar.config import settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ConcurrentUpdateError(Exception):
    """Compare-and-set kept losing for one subject."""

    def __init__(self, subject_id: str, attempts: int):
        self.subject_id = subject_id
        self.attempts = attempts
        super().__init__(f"Gave up writing {subject_id!r} after {attempts} conflicting attempts")


class SubjectLocks:
    """One asyncio.Lock per subject, released when nobody holds a reference."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, subject_id: str) -> asyncio.Lock:
        lock = self._locks.get(subject_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[subject_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, subject_id: str) -> AsyncIterator[None]:
        lock = self.lock_for(subject_id)
        async with lock:
            yield


async def load_record(
    session_factory: async_sessionmaker[AsyncSession],
    model: type[T],
    subject_id: str,
) -> T | None:
    """Fresh read of one score record (detached from its session)."""
    async with session_factory() as session:
        return await session.get(model, subject_id)


async def compare_and_set(
    session_factory: async_sessionmaker[AsyncSession],
    model: type,
    subject_id: str,
    expected_version: int | None,
    values: dict[str, Any],
) -> int | None:
    """
    Write `values` for `subject_id` if the record is still at `expected_version`.

    Args:
        expected_version: Version read before computing, or None when no
                          record existed (first write inserts).

    Returns:
        The new version, or None when another writer got there first.
    """
    async with session_factory() as session:
        if expected_version is None:
            session.add(model(subject_id=subject_id, version=1, **values))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None
            return 1

        result = await session.execute(
            update(model)
            .where(model.subject_id == subject_id, model.version == expected_version)
            .values(**values, version=expected_version + 1)
        )
        await session.commit()
        if result.rowcount != 1:
            return None
        return expected_version + 1


async def retry_on_conflict(
    subject_id: str,
    attempt: Callable[[], Awaitable[T | None]],
    max_attempts: int | None = None,
) -> T:
    """
    Run read-compute-CAS `attempt` until it succeeds.

    `attempt` returns None on a lost race. Raises ConcurrentUpdateError
    after `max_attempts` losses.
    """
    limit = max_attempts or settings.CAS_MAX_ATTEMPTS
    for n in range(1, limit + 1):
        outcome = await attempt()
        if outcome is not None:
            return outcome
        logger.warning("score_write_conflict", subject_id=subject_id, attempt=n)
    raise ConcurrentUpdateError(subject_id, limit)
