"""
Token wallet engine.

Every balance mutation runs inside one transaction that holds the wallet row
lock (``SELECT ... FOR UPDATE``), so concurrent earn/spend calls for the same
user are serialised and the audit log always agrees with the balance.

Business-rule failures (daily limit, insufficient balance) are returned as a
``WalletResult`` with ``success=False`` and a ``reason``; store errors roll the
transaction back and propagate.

The ``lock_wallet`` / ``apply_earn`` / ``apply_spend`` helpers do not commit,
so other ledgers (unlocks, ads) can combine a wallet mutation with their own
rows in a single transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select

from mindcase.config import get_settings
from mindcase.database import dialect_insert
from mindcase.db.models import UserWallet, WalletTransaction
from mindcase.entitlements.service import is_premium

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

EARN_MINIGAME = "EARN_MINIGAME"
EARN_AD = "EARN_AD"
EARN_BONUS = "EARN_BONUS"
EARN_SOURCES = frozenset({EARN_MINIGAME, EARN_AD, EARN_BONUS})

SPEND_UNLOCK = "SPEND_UNLOCK"
SPEND_TOPIC = "SPEND_TOPIC"
SPEND_HINT = "SPEND_HINT"
SPEND_RETRY = "SPEND_RETRY"
SPEND_PURPOSES = frozenset({SPEND_UNLOCK, SPEND_TOPIC, SPEND_HINT, SPEND_RETRY})

# Only these sources count toward (and are capped by) the daily limit
DAILY_LIMITED_SOURCES = frozenset({EARN_MINIGAME})

DAILY_LIMIT_REACHED = "daily_limit_reached"
INSUFFICIENT_BALANCE = "insufficient_balance"


@dataclass(frozen=True)
class WalletResult:
    success: bool
    balance: int
    reason: str | None = None
    tokens_awarded: int = 0
    tokens_spent: int = 0
    tokens_earned_today: int | None = None
    daily_limit: int | None = None
    required: int | None = None


@dataclass(frozen=True)
class WalletSummary:
    balance: int
    total_earned: int
    total_spent: int
    tokens_earned_today: int
    daily_limit: int
    remaining_today: int


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        msg = f"Amount must be a positive integer, got {amount!r}"
        raise ValueError(msg)


async def get_daily_limit(db: AsyncSession, user_id: int) -> int:
    """Premium users are effectively unlimited; everyone else gets the free cap."""
    settings = get_settings()
    if await is_premium(db, user_id):
        return settings.daily_limit_premium
    return settings.daily_limit_free


# ---------------------------------------------------------------------------
# Locked building blocks (no commit)
# ---------------------------------------------------------------------------


async def _ensure_wallet(db: AsyncSession, user_id: int) -> None:
    """Create a zero wallet if missing; a concurrent creator simply wins."""
    stmt = (
        dialect_insert(db, UserWallet)
        .values(
            user_id=user_id,
            balance=0,
            total_earned=0,
            total_spent=0,
            tokens_earned_today=0,
            last_reset_date=utc_today(),
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    await db.execute(stmt)


async def lock_wallet(db: AsyncSession, user_id: int, *, create: bool = True) -> UserWallet | None:
    """
    Lock the user's wallet row for the rest of the current transaction.

    Applies the daily reset under the lock. Returns None only when
    ``create`` is False and the user has no wallet yet.
    """
    if create:
        await _ensure_wallet(db, user_id)
    result = await db.execute(
        select(UserWallet)
        .where(UserWallet.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    wallet = result.scalar_one_or_none()
    if wallet is not None and wallet.last_reset_date != utc_today():
        wallet.tokens_earned_today = 0
        wallet.last_reset_date = utc_today()
    return wallet


def _record(
    db: AsyncSession,
    wallet: UserWallet,
    type_: str,
    amount: int,
    details: dict[str, Any] | None,
) -> None:
    now = datetime.now(timezone.utc)
    wallet.updated_at = now
    db.add(
        WalletTransaction(
            user_id=wallet.user_id,
            type=type_,
            amount=amount,
            balance_after=wallet.balance,
            details=details or {},
            created_at=now,
        )
    )


def apply_earn(
    db: AsyncSession,
    wallet: UserWallet,
    amount: int,
    source: str,
    daily_limit: int,
    details: dict[str, Any] | None = None,
) -> WalletResult:
    """Credit a locked wallet. Daily-limited sources are clipped to what is left today."""
    limited = source in DAILY_LIMITED_SOURCES
    remaining = daily_limit - wallet.tokens_earned_today
    if limited and remaining <= 0:
        return WalletResult(
            success=False,
            reason=DAILY_LIMIT_REACHED,
            balance=wallet.balance,
            tokens_earned_today=wallet.tokens_earned_today,
            daily_limit=daily_limit,
        )

    awarded = min(amount, remaining) if limited else amount
    wallet.balance += awarded
    wallet.total_earned += awarded
    if limited:
        wallet.tokens_earned_today += awarded
    _record(db, wallet, source, awarded, details)
    return WalletResult(
        success=True,
        balance=wallet.balance,
        tokens_awarded=awarded,
        tokens_earned_today=wallet.tokens_earned_today,
        daily_limit=daily_limit,
    )


def apply_spend(
    db: AsyncSession,
    wallet: UserWallet | None,
    amount: int,
    purpose: str,
    details: dict[str, Any] | None = None,
) -> WalletResult:
    """Debit a locked wallet, refusing to go below zero."""
    if wallet is None or wallet.balance < amount:
        return WalletResult(
            success=False,
            reason=INSUFFICIENT_BALANCE,
            balance=wallet.balance if wallet is not None else 0,
            required=amount,
        )

    wallet.balance -= amount
    wallet.total_spent += amount
    _record(db, wallet, purpose, -amount, details)
    return WalletResult(success=True, balance=wallet.balance, tokens_spent=amount)


# ---------------------------------------------------------------------------
# Public operations (own their transaction)
# ---------------------------------------------------------------------------


async def get_or_create_wallet(db: AsyncSession, user_id: int) -> UserWallet:
    """Return the user's wallet, creating it and applying the daily reset as needed."""
    try:
        wallet = await lock_wallet(db, user_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    assert wallet is not None  # noqa: S101
    return wallet


async def get_wallet_summary(db: AsyncSession, user_id: int) -> WalletSummary:
    wallet = await get_or_create_wallet(db, user_id)
    daily_limit = await get_daily_limit(db, user_id)
    return WalletSummary(
        balance=wallet.balance,
        total_earned=wallet.total_earned,
        total_spent=wallet.total_spent,
        tokens_earned_today=wallet.tokens_earned_today,
        daily_limit=daily_limit,
        remaining_today=max(0, daily_limit - wallet.tokens_earned_today),
    )


async def earn(
    db: AsyncSession,
    user_id: int,
    amount: int,
    source: str = EARN_MINIGAME,
    details: dict[str, Any] | None = None,
) -> WalletResult:
    """
    Credit tokens.

    ``EARN_MINIGAME`` credits are capped by the daily limit and fail with
    ``daily_limit_reached`` once it is used up; other sources are credited in
    full and do not count toward the limit.

    Raises:
        ValueError: On a non-positive amount or unknown source.
    """
    _check_amount(amount)
    if source not in EARN_SOURCES:
        msg = f"Unknown earn source: {source}"
        raise ValueError(msg)

    try:
        wallet = await lock_wallet(db, user_id)
        assert wallet is not None  # noqa: S101
        daily_limit = await get_daily_limit(db, user_id)
        result = apply_earn(db, wallet, amount, source, daily_limit, details)
        if result.success:
            await db.commit()
        else:
            await db.rollback()
    except Exception:
        await db.rollback()
        raise

    if result.success:
        logger.info(
            "tokens_earned",
            user_id=user_id,
            source=source,
            amount=result.tokens_awarded,
            balance=result.balance,
        )
    else:
        logger.info("daily_limit_reached", user_id=user_id, daily_limit=result.daily_limit)
    return result


async def spend(
    db: AsyncSession,
    user_id: int,
    amount: int,
    purpose: str = SPEND_UNLOCK,
    details: dict[str, Any] | None = None,
) -> WalletResult:
    """
    Debit tokens; fails with ``insufficient_balance`` and leaves the balance unchanged.

    Raises:
        ValueError: On a non-positive amount or unknown purpose.
    """
    _check_amount(amount)
    if purpose not in SPEND_PURPOSES:
        msg = f"Unknown spend purpose: {purpose}"
        raise ValueError(msg)

    try:
        wallet = await lock_wallet(db, user_id, create=False)
        result = apply_spend(db, wallet, amount, purpose, details)
        if result.success:
            await db.commit()
        else:
            await db.rollback()
    except Exception:
        await db.rollback()
        raise

    if result.success:
        logger.info("tokens_spent", user_id=user_id, purpose=purpose, amount=amount, balance=result.balance)
    else:
        logger.info("spend_rejected", user_id=user_id, purpose=purpose, reason=result.reason)
    return result


async def get_transactions(db: AsyncSession, user_id: int, limit: int = 50) -> list[WalletTransaction]:
    """Newest-first audit entries. No lock; may be slightly stale."""
    limit = max(1, min(limit, get_settings().transactions_max_limit))
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars())
