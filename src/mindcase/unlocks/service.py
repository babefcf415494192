"""
Content unlock gate.

An unlock is a single transaction: the wallet row is locked first (which also
serialises concurrent unlocks by the same user), then the existing-unlock
check, the spend and the unlock insert run under that lock. If the insert
still hits the unique key the whole transaction rolls back, so a spend is
never committed without its unlock row.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from mindcase.config import get_settings
from mindcase.database import dialect_insert
from mindcase.db.models import UnlockedContent
from mindcase.entitlements.service import is_premium
from mindcase.wallet.service import SPEND_TOPIC, SPEND_UNLOCK, apply_spend, lock_wallet

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

CONTENT_PUZZLE = "PUZZLE"
CONTENT_TOPIC = "TOPIC"

_SPEND_PURPOSES = {CONTENT_PUZZLE: SPEND_UNLOCK, CONTENT_TOPIC: SPEND_TOPIC}

ALREADY_UNLOCKED = "already_unlocked"
INVALID_CONTENT_TYPE = "invalid_content_type"


@dataclass(frozen=True)
class UnlockResult:
    success: bool
    reason: str | None = None
    content_type: str | None = None
    content_id: str | None = None
    tokens_spent: int = 0
    balance: int | None = None
    required: int | None = None


@dataclass(frozen=True)
class AccessCheck:
    has_access: bool
    reason: str
    cost: int | None = None


def normalize_content_type(content_type: str) -> str | None:
    normalized = content_type.strip().upper()
    return normalized if normalized in _SPEND_PURPOSES else None


def get_unlock_cost(content_type: str) -> int:
    """Token cost for a content type; unknown types cost the same as a puzzle."""
    settings = get_settings()
    if normalize_content_type(content_type) == CONTENT_TOPIC:
        return settings.unlock_cost_topic
    return settings.unlock_cost_puzzle


async def _find_unlock(db: AsyncSession, user_id: int, content_type: str, content_id: str) -> UnlockedContent | None:
    result = await db.execute(
        select(UnlockedContent)
        .where(UnlockedContent.user_id == user_id)
        .where(UnlockedContent.content_type == content_type)
        .where(UnlockedContent.content_id == content_id)
    )
    return result.scalar_one_or_none()


async def unlock_content(db: AsyncSession, user_id: int, content_type: str, content_id: str) -> UnlockResult:
    """Spend tokens to unlock a puzzle or topic, charging at most once per item."""
    kind = normalize_content_type(content_type)
    if kind is None:
        return UnlockResult(success=False, reason=INVALID_CONTENT_TYPE)
    cost = get_unlock_cost(kind)

    try:
        wallet = await lock_wallet(db, user_id, create=False)

        if await _find_unlock(db, user_id, kind, content_id) is not None:
            await db.rollback()
            return UnlockResult(success=False, reason=ALREADY_UNLOCKED, content_type=kind, content_id=content_id)

        spent = apply_spend(
            db,
            wallet,
            cost,
            _SPEND_PURPOSES[kind],
            {"contentType": kind, "contentId": content_id},
        )
        if not spent.success:
            await db.rollback()
            return UnlockResult(
                success=False,
                reason=spent.reason,
                content_type=kind,
                content_id=content_id,
                balance=spent.balance,
                required=cost,
            )

        await db.flush()
        inserted = await db.execute(
            dialect_insert(db, UnlockedContent)
            .values(
                user_id=user_id,
                content_type=kind,
                content_id=content_id,
                tokens_spent=cost,
                unlocked_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["user_id", "content_type", "content_id"])
            .returning(UnlockedContent.id)
        )
        if inserted.scalar_one_or_none() is None:
            await db.rollback()
            logger.warning("unlock_conflict_rolled_back", user_id=user_id, content_type=kind, content_id=content_id)
            return UnlockResult(success=False, reason=ALREADY_UNLOCKED, content_type=kind, content_id=content_id)

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("content_unlocked", user_id=user_id, content_type=kind, content_id=content_id, cost=cost)
    return UnlockResult(
        success=True,
        content_type=kind,
        content_id=content_id,
        tokens_spent=cost,
        balance=spent.balance,
    )


async def has_access(db: AsyncSession, user_id: int, content_type: str, content_id: str) -> AccessCheck:
    """Premium unlocks everything; otherwise the item must have been bought."""
    if await is_premium(db, user_id):
        return AccessCheck(has_access=True, reason="premium")
    kind = normalize_content_type(content_type) or content_type
    if await _find_unlock(db, user_id, kind, content_id) is not None:
        return AccessCheck(has_access=True, reason="unlocked")
    return AccessCheck(has_access=False, reason="locked", cost=get_unlock_cost(kind))


async def get_unlocked_content(db: AsyncSession, user_id: int) -> dict[str, list[str]]:
    """Unlocked ids grouped as ``{"puzzles": [...], "topics": [...]}``, newest first."""
    result = await db.execute(
        select(UnlockedContent.content_type, UnlockedContent.content_id)
        .where(UnlockedContent.user_id == user_id)
        .order_by(UnlockedContent.unlocked_at.desc(), UnlockedContent.id.desc())
    )
    grouped: dict[str, list[str]] = {"puzzles": [], "topics": []}
    for content_type, content_id in result.all():
        if content_type == CONTENT_PUZZLE:
            grouped["puzzles"].append(content_id)
        elif content_type == CONTENT_TOPIC:
            grouped["topics"].append(content_id)
    return grouped
