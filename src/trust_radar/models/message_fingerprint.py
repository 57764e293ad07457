"""
Trust Radar — Message Fingerprint Cache

Short-lived state for copy-paste detection: which conversations a subject
sent the same normalized message to. Rows expire after
COPY_PASTE_CACHE_TTL_MINUTES and are pruned by the fingerprint_prune job.
Only the hash is kept, never the message body.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import TIMESTAMP, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_radar.models.base import Base, JSONType


class MessageFingerprint(Base):
    """Conversations that received one message hash from one subject."""

    __tablename__ = "message_fingerprints"

    subject_id: Mapped[str] = mapped_column(String, primary_key=True, comment="Sender")
    message_hash: Mapped[str] = mapped_column(
        String(64), primary_key=True, comment="sha256 of normalized message text"
    )
    conversation_ids: Mapped[list] = mapped_column(
        JSONType, nullable=False, default=list, comment="Distinct conversations in the window"
    )
    window_started_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="First sighting in the current window"
    )
    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Prune after this instant"
    )

    __table_args__ = (
        Index("ix_message_fingerprints_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<MessageFingerprint subject={self.subject_id!r} "
            f"conversations={len(self.conversation_ids or [])}>"
        )
