"""Rankings and scheduler state — ranking_snapshots, job_checkpoints

Revision ID: 003_rankings_jobs_schema
Revises: 002_scores_schema
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision: str = "003_rankings_jobs_schema"
down_revision: Union[str, None] = "002_scores_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- ranking_snapshots (immutable once written) ---
    op.create_table(
        "ranking_snapshots",
        sa.Column("snapshot_date", sa.DATE(), nullable=False, comment="Ranking day (UTC)"),
        sa.Column("population", sa.String(), nullable=False),
        sa.Column("entries", JSONB(), nullable=False, comment="Ordered [{subject_id, rank, score}]"),
        sa.Column("entry_count", sa.INTEGER(), nullable=False),
        sa.Column("input_digest", sa.String(64), nullable=False),
        sa.Column("cutoff_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("generated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("snapshot_date", "population"),
    )

    # --- job_checkpoints ---
    op.create_table(
        "job_checkpoints",
        sa.Column("job_name", sa.String(), primary_key=True),
        sa.Column("last_status", sa.String(), nullable=False, server_default="never_run"),
        sa.Column("last_started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cursor", sa.String(), nullable=True),
        sa.Column("processed", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("failed", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("consecutive_failures", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("job_checkpoints")
    op.drop_table("ranking_snapshots")
