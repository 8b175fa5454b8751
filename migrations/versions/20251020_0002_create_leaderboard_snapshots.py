from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20251020_0002"
down_revision = "20251020_0001"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "leaderboard_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period", sa.String(length=16), nullable=False),
        sa.Column("entries", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("period IN ('daily', 'weekly', 'all_time')", name="ck_leaderboard_snapshots_period"),
    )
    op.create_index(
        "ix_leaderboard_snapshots_challenge_period_created",
        "leaderboard_snapshots",
        ["challenge_id", "period", "created_at"],
    )

def downgrade() -> None:
    op.drop_index("ix_leaderboard_snapshots_challenge_period_created", table_name="leaderboard_snapshots")
    op.drop_table("leaderboard_snapshots")
