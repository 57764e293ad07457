"""
Trust Radar — Read-only views of business subsystem data

The engine never owns or writes these stores. Each view is the narrow slice
a single detector or subscore formula needs, validated with pydantic so a
malformed upstream payload fails loudly at the boundary.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from pydantic import BaseModel, Field, field_validator

from trust_radar.utils.clock import as_utc


class _View(BaseModel):
    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Detector activity views
# ---------------------------------------------------------------------------


class SessionView(_View):
    """A paid or free chat/voice/video session hosted or joined by the subject."""

    session_id: str
    started_at: datetime
    duration_seconds: int | None = Field(default=None, description="None while still open")
    tokens_cost: int = 0
    session_type: str = "CHAT"

    @field_validator("started_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class RefundStats(_View):
    """Ticket totals for one organizer's event over the detection window."""

    total_tickets: int = Field(default=0, ge=0)
    refunded_tickets: int = Field(default=0, ge=0)


class IdentityReportView(_View):
    """One identity-fraud report filed against the subject."""

    report_id: str
    reporter_id: str | None = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


# ---------------------------------------------------------------------------
# KPI snapshot (trust inputs)
# ---------------------------------------------------------------------------


class KpiSnapshot(_View):
    """
    Per-subject KPI rollup over the trust lookback window.

    Every counter defaults to zero so a subject with no recorded activity
    in a subsystem gets the neutral value of the matching subscore.
    """

    subject_id: str
    population: str = "creators"
    sessions_total: int = Field(default=0, ge=0)
    sessions_completed: int = Field(default=0, ge=0)
    earnings_tokens: int = Field(default=0, ge=0)
    reviews_count: int = Field(default=0, ge=0)
    average_rating: Decimal | None = Field(default=None, ge=1, le=5)
    bookings_total: int = Field(default=0, ge=0)
    bookings_cancelled: int = Field(default=0, ge=0)
    orders_total: int = Field(default=0, ge=0)
    refunds_count: int = Field(default=0, ge=0)
    payouts_attempted: int = Field(default=0, ge=0)
    payouts_succeeded: int = Field(default=0, ge=0)
    moderation_actions: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Read contracts
# ---------------------------------------------------------------------------


class ActivityReader(Protocol):
    """Narrow read-only queries the detectors run against business stores."""

    async def paid_sessions(self, subject_id: str, since: datetime) -> list[SessionView]: ...

    async def opened_sessions(self, subject_id: str, since: datetime) -> list[SessionView]: ...

    async def event_refund_stats(self, subject_id: str, event_id: str, since: datetime) -> RefundStats: ...

    async def creator_cancellations(self, subject_id: str, since: datetime) -> int: ...

    async def payout_attempts(self, subject_id: str, since: datetime) -> int: ...

    async def identity_reports(self, subject_id: str, since: datetime) -> list[IdentityReportView]: ...

    async def panic_triggers(self, subject_id: str, since: datetime) -> int: ...


class KpiReader(Protocol):
    """Read-only KPI rollups for the Trust Aggregator."""

    async def kpi_snapshot(self, subject_id: str, since: datetime) -> KpiSnapshot | None: ...

    async def active_subjects(self, since: datetime) -> list[str]: ...
