"""
Rewarded-ad credits with a durable idempotency key.

Ad networks retry callbacks and clients retry requests, so every reward is
keyed by the provider's ``transaction_id``. The ``ad_events`` insert and the
wallet credit share one transaction: the credit only happens when the insert
actually created the row.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from mindcase.config import get_settings
from mindcase.database import dialect_insert
from mindcase.db.models import AdEvent
from mindcase.wallet.service import EARN_AD, apply_earn, get_daily_limit, lock_wallet

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

INVALID_REWARD_ITEM = "invalid_reward_item"


@dataclass(frozen=True)
class AdRewardResult:
    success: bool
    balance: int
    reward: int = 0
    duplicate: bool = False
    reason: str | None = None


def reward_amount_for(reward_item: str) -> int | None:
    settings = get_settings()
    amounts = {
        "token": settings.ad_reward_tokens,
        "retry": settings.ad_reward_tokens,
        "bonus": settings.ad_bonus_tokens,
    }
    return amounts.get(reward_item)


async def grant_ad_reward(
    db: AsyncSession,
    user_id: int,
    transaction_id: str,
    reward_item: str = "token",
    *,
    provider: str = "client",
    verified: bool = False,
) -> AdRewardResult:
    """Credit an ad reward once per ``transaction_id``; replays report ``duplicate``."""
    amount = reward_amount_for(reward_item)
    if amount is None:
        return AdRewardResult(success=False, balance=0, reason=INVALID_REWARD_ITEM)

    try:
        wallet = await lock_wallet(db, user_id)
        assert wallet is not None  # noqa: S101

        inserted = await db.execute(
            dialect_insert(db, AdEvent)
            .values(
                user_id=user_id,
                provider=provider,
                event_type="reward",
                reward_item=reward_item,
                reward_amount=amount,
                transaction_id=transaction_id,
                verified=verified,
                created_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["transaction_id"])
            .returning(AdEvent.id)
        )
        if inserted.scalar_one_or_none() is None:
            balance = wallet.balance
            await db.commit()
            logger.info("ad_reward_duplicate", user_id=user_id, transaction_id=transaction_id)
            return AdRewardResult(success=True, balance=balance, duplicate=True)

        daily_limit = await get_daily_limit(db, user_id)
        credited = apply_earn(
            db,
            wallet,
            amount,
            EARN_AD,
            daily_limit,
            {"transactionId": transaction_id, "rewardItem": reward_item, "provider": provider},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "ad_reward_granted",
        user_id=user_id,
        transaction_id=transaction_id,
        reward=credited.tokens_awarded,
        balance=credited.balance,
    )
    return AdRewardResult(success=True, balance=credited.balance, reward=credited.tokens_awarded)
