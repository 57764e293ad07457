"""
Trust Radar — Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- File-backed aiosqlite database with every table created
- Signal store and scoring policy
- In-memory fakes of the read-only business views
- A fixed, timezone-aware "now"
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from trust_radar.config import SignalSource, SignalType
from trust_radar.engine.policy import ScoringPolicy, load_detector_rules, load_policy
from trust_radar.models.base import Base
from trust_radar.signals.store import SignalDraft, SignalStore
from trust_radar.sources.views import IdentityReportView, KpiSnapshot, RefundStats, SessionView


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine(tmp_path):
    """
    aiosqlite engine on a temp file.

    A file (not :memory:) gives each session its own connection, so
    concurrent sessions behave like they do against Postgres.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'trust_radar.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory) -> SignalStore:
    return SignalStore(session_factory)


# ---------------------------------------------------------------------------
# Policy & time
# ---------------------------------------------------------------------------


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time for deterministic tests."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy() -> ScoringPolicy:
    return load_policy()


@pytest.fixture
def rules():
    return load_detector_rules()


@pytest.fixture
def add_signal(store) -> Callable:
    """
    Append a signal directly through the store, bypassing the emitter's
    window deduplication. Returns the AppendResult.
    """
    counter = {"n": 0}

    async def _add(
        subject_id: str,
        detected_at: datetime,
        severity: int = 3,
        signal_type: SignalType = SignalType.PAYOUT_ABUSE,
        source: SignalSource = SignalSource.WALLET,
        metadata: dict | None = None,
    ):
        counter["n"] += 1
        key = hashlib.sha256(f"{subject_id}|{counter['n']}|{detected_at.isoformat()}".encode()).hexdigest()
        return await store.append(
            SignalDraft(
                subject_id=subject_id,
                source=source,
                signal_type=signal_type,
                severity=severity,
                context_ref=f"ctx-{counter['n']}",
                metadata=metadata or {"kind": signal_type.value},
                idempotency_key=key,
                detected_at=detected_at,
            )
        )

    return _add


# ---------------------------------------------------------------------------
# Business view fakes
# ---------------------------------------------------------------------------


class FakeActivity:
    """In-memory ActivityReader. Tests fill the attributes they need."""

    def __init__(self) -> None:
        self.sessions: list[SessionView] = []
        self.opened: list[SessionView] = []
        self.refund_stats = RefundStats()
        self.cancellations = 0
        self.payouts = 0
        self.reports: list[IdentityReportView] = []
        self.panics = 0
        self.calls: list[str] = []

    async def paid_sessions(self, subject_id: str, since: datetime) -> list[SessionView]:
        self.calls.append("paid_sessions")
        return [s for s in self.sessions if s.started_at >= since]

    async def opened_sessions(self, subject_id: str, since: datetime) -> list[SessionView]:
        self.calls.append("opened_sessions")
        return [s for s in self.opened if s.started_at >= since]

    async def event_refund_stats(self, subject_id: str, event_id: str, since: datetime) -> RefundStats:
        self.calls.append("event_refund_stats")
        return self.refund_stats

    async def creator_cancellations(self, subject_id: str, since: datetime) -> int:
        self.calls.append("creator_cancellations")
        return self.cancellations

    async def payout_attempts(self, subject_id: str, since: datetime) -> int:
        self.calls.append("payout_attempts")
        return self.payouts

    async def identity_reports(self, subject_id: str, since: datetime) -> list[IdentityReportView]:
        self.calls.append("identity_reports")
        return [r for r in self.reports if r.created_at >= since]

    async def panic_triggers(self, subject_id: str, since: datetime) -> int:
        self.calls.append("panic_triggers")
        return self.panics


class FakeKpiReader:
    """In-memory KpiReader keyed by subject id."""

    def __init__(self) -> None:
        self.snapshots: dict[str, KpiSnapshot] = {}
        self.active: list[str] = []

    async def kpi_snapshot(self, subject_id: str, since: datetime) -> KpiSnapshot | None:
        return self.snapshots.get(subject_id)

    async def active_subjects(self, since: datetime) -> list[str]:
        return list(self.active)


@pytest.fixture
def activity() -> FakeActivity:
    return FakeActivity()


@pytest.fixture
def kpi_reader() -> FakeKpiReader:
    return FakeKpiReader()


def strong_kpis(subject_id: str, population: str = "creators") -> KpiSnapshot:
    """A subject doing everything right."""
    return KpiSnapshot(
        subject_id=subject_id,
        population=population,
        sessions_total=100,
        sessions_completed=98,
        earnings_tokens=5000,
        reviews_count=40,
        average_rating="4.9",
        bookings_total=50,
        bookings_cancelled=0,
        orders_total=60,
        refunds_count=0,
        payouts_attempted=10,
        payouts_succeeded=10,
        moderation_actions=0,
    )


@pytest.fixture
def strong_kpi_factory() -> Callable[..., KpiSnapshot]:
    return strong_kpis


def days_ago(now: datetime, days: float) -> datetime:
    return now - timedelta(days=days)
