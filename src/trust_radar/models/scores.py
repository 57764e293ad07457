"""
Trust Radar — Score Records (Risk + Trust)

Derived, mutable, one row per subject. Both tables are caches: every row is
reproducible by replaying the Signal history (risk) or the Signal history
plus KPI snapshots (trust).

`version` is the compare-and-set counter. Writers only update a row whose
version still equals the one they read (see aggregation/records.py).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import INTEGER, TIMESTAMP, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_radar.models.base import Base, JSONType


class RiskScore(Base):
    """Decayed, bounded risk score. Admin-only."""

    __tablename__ = "risk_scores"

    subject_id: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Subject identifier"
    )
    score: Mapped[int] = mapped_column(
        INTEGER, nullable=False, comment="0-100"
    )
    level: Mapped[str] = mapped_column(
        String, nullable=False, comment="LOW, MEDIUM, HIGH, CRITICAL, derived from score"
    )
    signal_counts: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=dict, comment="Signal count by signal_type"
    )
    last_signal_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Most recent signal in the history"
    )
    recalculated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Last recompute"
    )
    policy_version: Mapped[str] = mapped_column(
        String, nullable=False, default="v1", comment="ScoringPolicy version used"
    )
    version: Mapped[int] = mapped_column(
        INTEGER, nullable=False, default=1, comment="Optimistic concurrency counter"
    )

    __table_args__ = (
        CheckConstraint("score BETWEEN 0 AND 100", name="ck_risk_scores_score_range"),
        Index("ix_risk_scores_score", "score"),
    )

    def __repr__(self) -> str:
        return f"<RiskScore subject={self.subject_id!r} score={self.score} level={self.level!r}>"


class TrustScore(Base):
    """Composite trust score with subscores. Readable by admins and the subject."""

    __tablename__ = "trust_scores"

    subject_id: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Subject identifier (earners only)"
    )
    population: Mapped[str] = mapped_column(
        String, nullable=False, default="creators", comment="Ranking population/category"
    )
    score: Mapped[int] = mapped_column(INTEGER, nullable=False, comment="0-100")
    quality: Mapped[int] = mapped_column(INTEGER, nullable=False, comment="Quality subscore 0-100")
    reliability: Mapped[int] = mapped_column(INTEGER, nullable=False, comment="Reliability subscore 0-100")
    safety: Mapped[int] = mapped_column(INTEGER, nullable=False, comment="Safety subscore 0-100")
    payout: Mapped[int] = mapped_column(INTEGER, nullable=False, comment="Payout subscore 0-100")
    tier: Mapped[str] = mapped_column(
        String, nullable=False, comment="EXCELLENT, GOOD, FAIR, NEEDS_IMPROVEMENT"
    )
    previous_score: Mapped[int | None] = mapped_column(
        INTEGER, nullable=True, comment="Score before the last recompute"
    )
    trend: Mapped[str] = mapped_column(
        String, nullable=False, default="STABLE", comment="IMPROVING, STABLE, DECLINING"
    )
    score_history: Mapped[list] = mapped_column(
        JSONType, nullable=False, default=list, comment="Recent [{score, recalculated_at}], newest first"
    )
    recalculated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Last recompute"
    )
    policy_version: Mapped[str] = mapped_column(
        String, nullable=False, default="v1", comment="ScoringPolicy version used"
    )
    version: Mapped[int] = mapped_column(
        INTEGER, nullable=False, default=1, comment="Optimistic concurrency counter"
    )

    __table_args__ = (
        CheckConstraint("score BETWEEN 0 AND 100", name="ck_trust_scores_score_range"),
        Index("ix_trust_scores_population_score", "population", "score"),
    )

    @property
    def subscores(self) -> dict[str, int]:
        return {
            "quality": self.quality,
            "reliability": self.reliability,
            "safety": self.safety,
            "payout": self.payout,
        }

    def __repr__(self) -> str:
        return f"<TrustScore subject={self.subject_id!r} score={self.score} tier={self.tier!r}>"
