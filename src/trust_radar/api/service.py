"""
Trust Radar — Query Service

Read-mostly access to signals, scores and rankings, plus the admin
on-demand recompute. Every operation takes the caller Principal first and
raises typed QueryError subclasses:

- list_signals, get_risk_score, list_high_risk, recompute_now: admin only
- get_trust_score: admin or the subject itself
- get_ranking: public

Pagination uses opaque cursors; clients must not parse them.
"""

from __future__ import annotations

import base64
import binascii
import uuid
from datetime import date, datetime
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from sqlalchemy import select

from trust_radar.aggregation.ranking_generator import RankingGenerator
from trust_radar.aggregation.risk_aggregator import RiskAggregator
from trust_radar.aggregation.trust_aggregator import TrustAggregator
from trust_radar.api.access import Principal, require_admin, require_admin_or_self
from trust_radar.api.errors import InvalidArgumentError, NotFoundError
from trust_radar.config import RiskLevel, SignalSource, SignalType, TrustTier, TrustTrend, settings
from trust_radar.models.scores import RiskScore
from trust_radar.signals.store import SignalStore
from trust_radar.utils.clock import as_utc

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class _View(BaseModel):
    @field_validator("*")
    @classmethod
    def utc_datetimes(cls, v: Any) -> Any:
        # SQLite hands back naive datetimes
        return as_utc(v) if isinstance(v, datetime) else v


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SignalRecord(_View):
    id: uuid.UUID
    subject_id: str
    source: SignalSource
    signal_type: SignalType
    severity: int
    context_ref: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime


class RiskScoreView(_View):
    subject_id: str
    score: int
    level: RiskLevel
    signal_counts: dict[str, int] = Field(default_factory=dict)
    last_signal_at: datetime | None = None
    recalculated_at: datetime
    policy_version: str


class TrustScoreView(_View):
    subject_id: str
    population: str
    score: int
    tier: TrustTier
    previous_score: int | None = None
    trend: TrustTrend = TrustTrend.STABLE
    quality: int
    reliability: int
    safety: int
    payout: int
    recalculated_at: datetime
    policy_version: str


class RankingEntryView(BaseModel):
    subject_id: str
    rank: int
    score: int


class RankingView(_View):
    snapshot_date: date
    population: str
    entries: list[RankingEntryView]
    generated_at: datetime


class Page(BaseModel, Generic[T]):
    items: list[T]
    next_cursor: str | None = None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignalFilter(BaseModel):
    """Filters for list_signals. Every field is optional."""

    subject_id: str | None = None
    source: SignalSource | None = None
    signal_type: SignalType | None = None
    min_severity: int | None = Field(default=None, ge=1, le=5)
    max_severity: int | None = Field(default=None, ge=1, le=5)
    detected_from: datetime | None = None
    detected_to: datetime | None = None
    limit: int = Field(default=settings.QUERY_DEFAULT_PAGE_SIZE, ge=1, le=settings.QUERY_MAX_PAGE_SIZE)
    cursor: str | None = None

    @model_validator(mode="after")
    def check_ranges(self) -> SignalFilter:
        if (
            self.min_severity is not None
            and self.max_severity is not None
            and self.min_severity > self.max_severity
        ):
            raise ValueError("min_severity must not exceed max_severity")
        if (
            self.detected_from is not None
            and self.detected_to is not None
            and as_utc(self.detected_from) > as_utc(self.detected_to)
        ):
            raise ValueError("detected_from must not be after detected_to")
        return self

    @classmethod
    def parse(cls, **fields: Any) -> SignalFilter:
        """Build a filter, reporting bad input as InvalidArgumentError."""
        try:
            return cls(**fields)
        except ValidationError as e:
            message = "; ".join(err["msg"] for err in e.errors())
            raise InvalidArgumentError(message or "Invalid signal filter") from e


# ---------------------------------------------------------------------------
# Cursors
# ---------------------------------------------------------------------------


def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(f"o:{offset}".encode()).decode().rstrip("=")


def decode_cursor(cursor: str | None) -> int:
    if not cursor:
        return 0
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode()).decode()
        prefix, _, value = raw.partition(":")
        offset = int(value)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InvalidArgumentError("Malformed cursor") from None
    if prefix != "o" or offset < 0:
        raise InvalidArgumentError("Malformed cursor")
    return offset


def _check_limit(limit: int) -> int:
    if not 1 <= limit <= settings.QUERY_MAX_PAGE_SIZE:
        raise InvalidArgumentError(f"limit must be between 1 and {settings.QUERY_MAX_PAGE_SIZE}")
    return limit


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class QueryService:
    """Query and admin operations over the engine's stores."""

    def __init__(
        self,
        store: SignalStore,
        risk: RiskAggregator,
        trust: TrustAggregator,
        ranking: RankingGenerator,
    ):
        self.store = store
        self.risk = risk
        self.trust = trust
        self.ranking = ranking

    async def list_signals(
        self,
        principal: Principal,
        query: SignalFilter | dict[str, Any] | None = None,
    ) -> Page[SignalRecord]:
        require_admin(principal)
        if not isinstance(query, SignalFilter):
            query = SignalFilter.parse(**(query or {}))
        offset = decode_cursor(query.cursor)
        rows = await self.store.list_signals(
            subject_id=query.subject_id,
            source=query.source,
            signal_type=query.signal_type,
            min_severity=query.min_severity,
            max_severity=query.max_severity,
            detected_from=query.detected_from,
            detected_to=query.detected_to,
            offset=offset,
            limit=query.limit + 1,
        )
        has_more = len(rows) > query.limit
        items = [
            SignalRecord(
                id=row.id,
                subject_id=row.subject_id,
                source=row.source,
                signal_type=row.signal_type,
                severity=row.severity,
                context_ref=row.context_ref,
                metadata=row.signal_metadata or {},
                detected_at=row.detected_at,
            )
            for row in rows[: query.limit]
        ]
        return Page[SignalRecord](
            items=items,
            next_cursor=encode_cursor(offset + query.limit) if has_more else None,
        )

    async def get_risk_score(self, principal: Principal, subject_id: str) -> RiskScoreView:
        require_admin(principal)
        record = await self.risk.get(subject_id)
        if record is None:
            raise NotFoundError(f"No risk score for subject {subject_id!r}")
        return RiskScoreView.model_validate(record, from_attributes=True)

    async def list_high_risk(
        self,
        principal: Principal,
        min_level: RiskLevel | None = None,
        min_score: int | None = None,
        limit: int = settings.QUERY_DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> Page[RiskScoreView]:
        """Subjects at or above a level (default HIGH) or score, highest first."""
        require_admin(principal)
        if min_level is not None and min_score is not None:
            raise InvalidArgumentError("Pass either min_level or min_score, not both")
        if min_score is not None and not 0 <= min_score <= 100:
            raise InvalidArgumentError("min_score must be between 0 and 100")
        _check_limit(limit)
        offset = decode_cursor(cursor)

        if min_score is None:
            policy = self.risk.policy
            threshold = {
                RiskLevel.LOW: 0,
                RiskLevel.MEDIUM: policy.risk_medium_min,
                RiskLevel.HIGH: policy.risk_high_min,
                RiskLevel.CRITICAL: policy.risk_critical_min,
            }[min_level or RiskLevel.HIGH]
        else:
            threshold = min_score

        stmt = (
            select(RiskScore)
            .where(RiskScore.score >= threshold)
            .order_by(RiskScore.score.desc(), RiskScore.subject_id)
            .offset(offset)
            .limit(limit + 1)
        )
        async with self.risk.session_factory() as session:
            rows = list((await session.execute(stmt)).scalars().all())

        has_more = len(rows) > limit
        return Page[RiskScoreView](
            items=[RiskScoreView.model_validate(r, from_attributes=True) for r in rows[:limit]],
            next_cursor=encode_cursor(offset + limit) if has_more else None,
        )

    async def get_trust_score(self, principal: Principal, subject_id: str) -> TrustScoreView:
        require_admin_or_self(principal, subject_id)
        record = await self.trust.get(subject_id)
        if record is None:
            raise NotFoundError(f"No trust score for subject {subject_id!r}")
        return TrustScoreView.model_validate(record, from_attributes=True)

    async def get_ranking(self, snapshot_date: date, population: str) -> RankingView:
        if not population or not population.strip():
            raise InvalidArgumentError("population is required")
        snapshot = await self.ranking.get(snapshot_date, population)
        if snapshot is None:
            raise NotFoundError(f"No ranking for {population!r} on {snapshot_date.isoformat()}")
        return RankingView(
            snapshot_date=snapshot.snapshot_date,
            population=snapshot.population,
            entries=[RankingEntryView(**entry) for entry in snapshot.entries],
            generated_at=snapshot.generated_at,
        )

    async def recompute_now(
        self,
        principal: Principal,
        subject_id: str,
        kind: str,
    ) -> RiskScoreView | TrustScoreView:
        """
        Recompute one subject's risk or trust record immediately.

        Raises:
            InvalidArgumentError: unknown kind or empty subject id.
            NotFoundError: trust requested for a subject without KPIs.
        """
        require_admin(principal)
        if not subject_id or not subject_id.strip():
            raise InvalidArgumentError("subject_id is required")

        logger.info("admin_recompute_requested", subject_id=subject_id, kind=kind)
        if kind == "risk":
            record = await self.risk.recompute(subject_id)
            return RiskScoreView.model_validate(record, from_attributes=True)
        if kind == "trust":
            trust_record = await self.trust.recompute(subject_id)
            if trust_record is None:
                raise NotFoundError(f"No KPI data for subject {subject_id!r}")
            return TrustScoreView.model_validate(trust_record, from_attributes=True)
        raise InvalidArgumentError(f"kind must be 'risk' or 'trust', got {kind!r}")
