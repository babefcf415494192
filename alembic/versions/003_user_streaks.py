"""Daily activity streaks.

Revision ID: 003_user_streaks
Revises: 002_stripe_checkouts
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "003_user_streaks"
down_revision: str | None = "002_stripe_checkouts"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user_streaks",
        sa.Column(
            "user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("current_streak", sa.Integer(), server_default="0", nullable=False),
        sa.Column("max_streak", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_activity_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("current_streak >= 0", name="ck_user_streaks_current_non_negative"),
        sa.CheckConstraint("max_streak >= current_streak", name="ck_user_streaks_max_at_least_current"),
    )


def downgrade() -> None:
    op.drop_table("user_streaks")
