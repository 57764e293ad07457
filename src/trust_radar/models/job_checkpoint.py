"""
Trust Radar — Job Checkpoint Model

One row per named scheduled job. Holds the job's progress cursor and
retry state so a crashed or timed-out batch is inspectable and resumes
at the next interval.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import INTEGER, TIMESTAMP, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from trust_radar.models.base import Base


class JobCheckpoint(Base):
    """Progress and retry state of a scheduled job."""

    __tablename__ = "job_checkpoints"

    job_name: Mapped[str] = mapped_column(String, primary_key=True, comment="Registry name")
    last_status: Mapped[str] = mapped_column(
        String, nullable=False, default="never_run", comment="JobStatus value"
    )
    last_started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    last_completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    last_success_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Start of the last fully successful run"
    )
    cursor: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Last subject processed in the most recent run"
    )
    processed: Mapped[int] = mapped_column(INTEGER, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(INTEGER, nullable=False, default=0)
    consecutive_failures: Mapped[int] = mapped_column(INTEGER, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<JobCheckpoint job={self.job_name!r} status={self.last_status!r} "
            f"processed={self.processed} failed={self.failed}>"
        )
