"""
Trust Radar — Ranking Snapshot Model

One row per (snapshot_date, population). Written once by the daily ranking
job and never updated; the next day's row supersedes it for readers.

Public table: snapshots feed discovery features.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import DATE, INTEGER, TIMESTAMP, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_radar.models.base import Base, JSONType


class RankingSnapshot(Base):
    """Dated, ordered materialization of trust scores for one population."""

    __tablename__ = "ranking_snapshots"

    snapshot_date: Mapped[date] = mapped_column(
        DATE, primary_key=True, comment="Ranking day (UTC)"
    )
    population: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Population/category ranked"
    )
    entries: Mapped[list] = mapped_column(
        JSONType, nullable=False, comment="Ordered [{subject_id, rank, score}]"
    )
    entry_count: Mapped[int] = mapped_column(
        INTEGER, nullable=False, comment="len(entries)"
    )
    input_digest: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="sha256 of canonical entries JSON"
    )
    cutoff_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Trust records were read as of this instant"
    )
    generated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="When the snapshot was written"
    )

    def __repr__(self) -> str:
        return (
            f"<RankingSnapshot date={self.snapshot_date!r} population={self.population!r} "
            f"entries={self.entry_count}>"
        )
