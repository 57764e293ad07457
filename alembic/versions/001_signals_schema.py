"""Signals schema — signals, message_fingerprints

Revision ID: 001_signals_schema
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision: str = "001_signals_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- signals (append-only) ---
    op.create_table(
        "signals",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, comment="Opaque signal identifier"),
        sa.Column("subject_id", sa.String(), nullable=False, comment="Subject (user) the signal is about"),
        sa.Column("source", sa.String(), nullable=False, comment="Emitting subsystem"),
        sa.Column("signal_type", sa.String(), nullable=False, comment="One of the 8 fixed abuse categories"),
        sa.Column("severity", sa.INTEGER(), nullable=False, comment="1 (weak) to 5 (strong)"),
        sa.Column("context_ref", sa.String(), nullable=True, comment="Opaque pointer into the emitting subsystem"),
        sa.Column("metadata", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("idempotency_key", sa.String(64), nullable=False, comment="sha256(subject, category, window bucket)"),
        sa.Column("detected_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_signals_idempotency_key"),
        sa.CheckConstraint("severity BETWEEN 1 AND 5", name="ck_signals_severity_range"),
    )
    op.create_index("ix_signals_subject_detected", "signals", ["subject_id", "detected_at"])
    op.create_index("ix_signals_detected_at", "signals", ["detected_at"])

    # --- message_fingerprints (copy-paste cache) ---
    op.create_table(
        "message_fingerprints",
        sa.Column("subject_id", sa.String(), nullable=False, comment="Sender"),
        sa.Column("message_hash", sa.String(64), nullable=False, comment="sha256 of normalized message text"),
        sa.Column("conversation_ids", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("window_started_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("subject_id", "message_hash"),
    )
    op.create_index("ix_message_fingerprints_expires_at", "message_fingerprints", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_message_fingerprints_expires_at", table_name="message_fingerprints")
    op.drop_table("message_fingerprints")
    op.drop_index("ix_signals_detected_at", table_name="signals")
    op.drop_index("ix_signals_subject_detected", table_name="signals")
    op.drop_table("signals")
