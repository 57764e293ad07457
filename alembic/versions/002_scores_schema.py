"""Score records — risk_scores, trust_scores

Revision ID: 002_scores_schema
Revises: 001_signals_schema
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision: str = "002_scores_schema"
down_revision: Union[str, None] = "001_signals_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- risk_scores (admin only, one row per subject) ---
    op.create_table(
        "risk_scores",
        sa.Column("subject_id", sa.String(), primary_key=True),
        sa.Column("score", sa.INTEGER(), nullable=False, comment="0-100"),
        sa.Column("level", sa.String(), nullable=False, comment="LOW, MEDIUM, HIGH, CRITICAL"),
        sa.Column("signal_counts", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("last_signal_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("recalculated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("policy_version", sa.String(), nullable=False, server_default="v1"),
        sa.Column("version", sa.INTEGER(), nullable=False, server_default="1", comment="CAS counter"),
        sa.CheckConstraint("score BETWEEN 0 AND 100", name="ck_risk_scores_score_range"),
    )
    op.create_index("ix_risk_scores_score", "risk_scores", ["score"])

    # --- trust_scores (admin + subject) ---
    op.create_table(
        "trust_scores",
        sa.Column("subject_id", sa.String(), primary_key=True),
        sa.Column("population", sa.String(), nullable=False, server_default="creators"),
        sa.Column("score", sa.INTEGER(), nullable=False, comment="0-100"),
        sa.Column("quality", sa.INTEGER(), nullable=False),
        sa.Column("reliability", sa.INTEGER(), nullable=False),
        sa.Column("safety", sa.INTEGER(), nullable=False),
        sa.Column("payout", sa.INTEGER(), nullable=False),
        sa.Column("tier", sa.String(), nullable=False, comment="EXCELLENT, GOOD, FAIR, NEEDS_IMPROVEMENT"),
        sa.Column("recalculated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("policy_version", sa.String(), nullable=False, server_default="v1"),
        sa.Column("version", sa.INTEGER(), nullable=False, server_default="1", comment="CAS counter"),
        sa.CheckConstraint("score BETWEEN 0 AND 100", name="ck_trust_scores_score_range"),
    )
    op.create_index("ix_trust_scores_population_score", "trust_scores", ["population", "score"])


def downgrade() -> None:
    op.drop_index("ix_trust_scores_population_score", table_name="trust_scores")
    op.drop_table("trust_scores")
    op.drop_index("ix_risk_scores_score", table_name="risk_scores")
    op.drop_table("risk_scores")
