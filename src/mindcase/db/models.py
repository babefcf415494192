"""ORM models for the MindCase backend.

Tables are created by the Alembic baseline migration; the money-like columns
on ``user_wallets`` are guarded by CHECK constraints so the balance invariant
holds even if application code is wrong.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mindcase.db.base import Base
from mindcase.db.types import UTCDateTime


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Identity record. Guests are upgraded in place, never deleted."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('GUEST', 'USER')", name="ck_users_role"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(256), nullable=True)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="USER", server_default="USER")
    is_guest: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    google_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    apple_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    refresh_tokens: Mapped[list[RefreshToken]] = relationship("RefreshToken", back_populates="user")
    wallet: Mapped[UserWallet | None] = relationship("UserWallet", back_populates="user", uselist=False)


# ---------------------------------------------------------------------------
# Auth: refresh tokens and login history
# ---------------------------------------------------------------------------


class RefreshToken(Base):
    """Opaque refresh token, stored by SHA-256 hash, grouped into families."""

    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ix_refresh_tokens_family_id", "family_id"),
        Index("ix_refresh_tokens_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    family_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    replaced_by: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True
    )
    ip_address: Mapped[str | None] = mapped_column(INET, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(32), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(64), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="refresh_tokens")


class LoginHistory(Base):
    """Append-only log of login / logout / session revocation events."""

    __tablename__ = "login_history"
    __table_args__ = (Index("ix_login_history_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(INET, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(32), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


class UserWallet(Base):
    """Token balance, one row per user. Mutated only under a row lock."""

    __tablename__ = "user_wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_user_wallets_balance_non_negative"),
        CheckConstraint("balance = total_earned - total_spent", name="ck_user_wallets_balance_ledger"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    tokens_earned_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_reset_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    user: Mapped[User] = relationship("User", back_populates="wallet")


class WalletTransaction(Base):
    """Immutable audit entry, one per wallet mutation."""

    __tablename__ = "wallet_transactions"
    __table_args__ = (Index("ix_wallet_transactions_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSONB, default=dict, server_default="{}")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Minigame sessions (anti-cheat)
# ---------------------------------------------------------------------------


class MinigameSession(Base):
    """Single-use game attempt. Leaves 'active' exactly once."""

    __tablename__ = "minigame_sessions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'completed', 'expired', 'rejected')",
            name="ck_minigame_sessions_status",
        ),
        Index("ix_minigame_sessions_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    game_type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)


# ---------------------------------------------------------------------------
# Entitlements (subscriptions)
# ---------------------------------------------------------------------------


class UserSubscription(Base):
    """Premium entitlement driven by billing webhooks. Revoked, never deleted."""

    __tablename__ = "user_subscriptions"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "provider_subscription_id", name="uq_user_subscriptions_user_provider_sub"
        ),
        CheckConstraint("status IN ('active', 'revoked')", name="ck_user_subscriptions_status"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class StripeCheckout(Base):
    """Which user a Stripe subscription was bought by.

    Recorded from ``checkout.session.completed``; later subscription events
    carry no user reference of their own and are resolved through this row.
    """

    __tablename__ = "stripe_checkouts"
    __table_args__ = (
        UniqueConstraint("subscription_id", name="uq_stripe_checkouts_subscription_id"),
        Index("ix_stripe_checkouts_customer", "customer_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Unlocked content
# ---------------------------------------------------------------------------


class UnlockedContent(Base):
    """Permanent access grant bought with tokens."""

    __tablename__ = "unlocked_content"
    __table_args__ = (
        UniqueConstraint("user_id", "content_type", "content_id", name="uq_unlocked_content_user_item"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    content_id: Mapped[str] = mapped_column(String(128), nullable=False)
    tokens_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Rewarded ads (durable idempotency keys)
# ---------------------------------------------------------------------------


class AdEvent(Base):
    """One row per rewarded-ad callback; transaction_id is the idempotency key."""

    __tablename__ = "ad_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False, default="reward", server_default="reward")
    reward_item: Mapped[str] = mapped_column(String(32), nullable=False)
    reward_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Daily streaks
# ---------------------------------------------------------------------------


class UserStreak(Base):
    """Consecutive UTC days with activity, one row per user."""

    __tablename__ = "user_streaks"
    __table_args__ = (
        CheckConstraint("current_streak >= 0", name="ck_user_streaks_current_non_negative"),
        CheckConstraint("max_streak >= current_streak", name="ck_user_streaks_max_at_least_current"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
