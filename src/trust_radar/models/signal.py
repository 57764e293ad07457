"""
Trust Radar — Signal Model (Signal Store)

Append-only log of detected behavioral signals. Rows are never updated.
Rows are deleted only by the retention job once older than
SIGNAL_RETENTION_DAYS.

Admin-only table: raw signals are never exposed to subjects.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    INTEGER,
    TIMESTAMP,
    CheckConstraint,
    Index,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from trust_radar.models.base import Base, JSONType


class Signal(Base):
    """
    One immutable detected behavioral event tied to a subject.

    `idempotency_key` is unique: the same (subject, category, window bucket)
    can only ever produce one row, however often the emitter is called.
    """

    __tablename__ = "signals"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Opaque signal identifier",
    )
    subject_id: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Subject (user) the signal is about",
    )
    source: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Emitting subsystem: CHAT, AI_CHAT, AI_VOICE, AI_VIDEO, CALENDAR, EVENT, WALLET, IDENTITY, SAFETY",
    )
    signal_type: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="One of the 8 fixed abuse categories",
    )
    severity: Mapped[int] = mapped_column(
        INTEGER,
        nullable=False,
        comment="1 (weak) to 5 (strong)",
    )
    context_ref: Mapped[str | None] = mapped_column(
        String,
        nullable=True,
        comment="Opaque pointer into the emitting subsystem's own record, never dereferenced",
    )
    signal_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="Tagged, signal-type-specific payload (see signals/metadata.py)",
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="sha256(subject, category, window bucket)",
    )
    detected_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        comment="Detection timestamp",
    )

    __table_args__ = (
        CheckConstraint("severity BETWEEN 1 AND 5", name="ck_signals_severity_range"),
        Index("ix_signals_subject_detected", "subject_id", "detected_at"),
        Index("ix_signals_detected_at", "detected_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Signal id={self.id!r} subject={self.subject_id!r} "
            f"type={self.signal_type!r} severity={self.severity}>"
        )
