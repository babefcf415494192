"""
Daily activity streaks.

One row per user, counted in UTC calendar days. Recording activity again on
the same day changes nothing; activity on the day after the last one extends
the streak; after a longer gap the streak starts over at 1. ``max_streak``
never decreases. Updates hold the streak row lock like the wallet does.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from mindcase.database import dialect_insert
from mindcase.db.models import UserStreak
from mindcase.wallet.service import utc_today

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class StreakSummary:
    current_streak: int
    max_streak: int
    last_activity_date: date | None


@dataclass(frozen=True)
class StreakUpdate:
    current_streak: int
    max_streak: int
    last_activity_date: date
    streak_increased: bool


def _live_streak(streak: UserStreak | None, today: date) -> StreakSummary:
    """A streak whose last day is before yesterday is already broken and reads as 0."""
    if streak is None:
        return StreakSummary(current_streak=0, max_streak=0, last_activity_date=None)
    current = streak.current_streak
    last = streak.last_activity_date
    if last is None or last < today - timedelta(days=1):
        current = 0
    return StreakSummary(current_streak=current, max_streak=streak.max_streak, last_activity_date=last)


async def _lock_streak(db: AsyncSession, user_id: int) -> UserStreak:
    await db.execute(
        dialect_insert(db, UserStreak)
        .values(
            user_id=user_id,
            current_streak=0,
            max_streak=0,
            last_activity_date=None,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    result = await db.execute(
        select(UserStreak)
        .where(UserStreak.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def get_streak(db: AsyncSession, user_id: int) -> StreakSummary:
    result = await db.execute(select(UserStreak).where(UserStreak.user_id == user_id))
    return _live_streak(result.scalar_one_or_none(), utc_today())


async def record_activity(db: AsyncSession, user_id: int) -> StreakUpdate:
    """Count today (UTC) toward the user's streak."""
    today = utc_today()
    try:
        streak = await _lock_streak(db, user_id)
        last = streak.last_activity_date
        if last is not None and last >= today:
            update = StreakUpdate(
                current_streak=streak.current_streak,
                max_streak=streak.max_streak,
                last_activity_date=last,
                streak_increased=False,
            )
            await db.commit()
            return update

        if last == today - timedelta(days=1):
            streak.current_streak += 1
            increased = True
        else:
            # First activity counts as an increase, a restart after a gap does not
            increased = last is None
            streak.current_streak = 1
        streak.max_streak = max(streak.max_streak, streak.current_streak)
        streak.last_activity_date = today
        streak.updated_at = datetime.now(timezone.utc)
        update = StreakUpdate(
            current_streak=streak.current_streak,
            max_streak=streak.max_streak,
            last_activity_date=today,
            streak_increased=increased,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "streak_activity_recorded",
        user_id=user_id,
        current_streak=update.current_streak,
        max_streak=update.max_streak,
        increased=update.streak_increased,
    )
    return update


async def sync_streak(db: AsyncSession, user_id: int, client_streak: int, client_last_date: date) -> StreakSummary:
    """
    Merge a streak kept by an offline client.

    The server keeps its own value unless the client reports a longer streak
    that is still alive (last day today or yesterday).

    Raises:
        ValueError: On a negative streak or a last activity date in the future.
    """
    today = utc_today()
    if client_streak < 0:
        msg = f"Streak must not be negative, got {client_streak}"
        raise ValueError(msg)
    if client_last_date > today:
        msg = f"Last activity date {client_last_date.isoformat()} is in the future"
        raise ValueError(msg)

    try:
        streak = await _lock_streak(db, user_id)
        server = _live_streak(streak, today)
        adopted = client_streak > server.current_streak and client_last_date >= today - timedelta(days=1)
        if adopted:
            streak.current_streak = client_streak
            streak.max_streak = max(streak.max_streak, client_streak)
            streak.last_activity_date = client_last_date
            streak.updated_at = datetime.now(timezone.utc)
            server = _live_streak(streak, today)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "streak_synced",
        user_id=user_id,
        client_streak=client_streak,
        adopted=adopted,
        current_streak=server.current_streak,
    )
    return server
