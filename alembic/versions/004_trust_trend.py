"""Add trend tracking columns to trust_scores

Revision ID: 004_trust_trend
Revises: 003_rankings_jobs_schema
Create Date: 2026-10-17

Adds:
  - trust_scores.previous_score (INTEGER, nullable)
  - trust_scores.trend (String, server_default='STABLE')
    Values: IMPROVING | STABLE | DECLINING
  - trust_scores.score_history (JSONB, server_default='[]')
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision: str = "004_trust_trend"
down_revision: Union[str, None] = "003_rankings_jobs_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "trust_scores",
        sa.Column(
            "previous_score",
            sa.INTEGER(),
            nullable=True,
            comment="Score before the last recompute",
        ),
    )
    op.add_column(
        "trust_scores",
        sa.Column(
            "trend",
            sa.String(),
            server_default="STABLE",
            nullable=False,
            comment="Trend: IMPROVING | STABLE | DECLINING",
        ),
    )
    op.add_column(
        "trust_scores",
        sa.Column(
            "score_history",
            JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
            comment="Recent [{score, recalculated_at}], newest first",
        ),
    )


def downgrade() -> None:
    op.drop_column("trust_scores", "score_history")
    op.drop_column("trust_scores", "trend")
    op.drop_column("trust_scores", "previous_score")
