"""Stripe checkout to user mapping.

Subscription webhooks only carry Stripe ids; the checkout session is the one
event that names the MindCase user, so it is recorded here.

Revision ID: 002_stripe_checkouts
Revises: 001_baseline
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "002_stripe_checkouts"
down_revision: str | None = "001_baseline"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "stripe_checkouts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("subscription_id", sa.String(255), nullable=False),
        sa.Column("customer_id", sa.String(255), nullable=True),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("subscription_id", name="uq_stripe_checkouts_subscription_id"),
    )
    op.create_index("ix_stripe_checkouts_customer", "stripe_checkouts", ["customer_id"])


def downgrade() -> None:
    op.drop_index("ix_stripe_checkouts_customer", table_name="stripe_checkouts")
    op.drop_table("stripe_checkouts")
