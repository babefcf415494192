"""
Minigame session ledger (anti-cheat).

A client must start a session before playing and present its id to claim a
reward. Each session leaves ``active`` exactly once:

    active -> completed | expired | rejected

``complete_session`` holds the session row lock while it decides, so two
parallel completions of the same id cannot both observe ``active``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select, update

from mindcase.config import get_settings
from mindcase.db.models import MinigameSession

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"
STATUS_REJECTED = "rejected"

INVALID_SESSION = "invalid_session"
SESSION_ALREADY_USED = "session_already_used"
SESSION_EXPIRED = "session_expired"
TOO_FAST = "too_fast"


@dataclass(frozen=True)
class StartedSession:
    session_id: str
    expires_at: datetime
    max_duration_ms: int


@dataclass(frozen=True)
class SessionOutcome:
    success: bool
    reason: str | None = None
    message: str | None = None
    session_id: str | None = None
    game_duration_ms: int | None = None
    can_claim_reward: bool = False


def _normalize_session_id(session_id: str) -> str | None:
    try:
        return str(uuid.UUID(str(session_id)))
    except ValueError:
        return None


async def start_session(db: AsyncSession, user_id: int, game_type: str) -> StartedSession:
    """Open a new single-use session that expires after the maximum game duration."""
    settings = get_settings()
    started_at = datetime.now(timezone.utc)
    session = MinigameSession(
        id=str(uuid.uuid4()),
        user_id=user_id,
        game_type=game_type,
        status=STATUS_ACTIVE,
        started_at=started_at,
        expires_at=started_at + timedelta(seconds=settings.minigame_max_duration_seconds),
    )
    db.add(session)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("minigame_session_started", user_id=user_id, session_id=session.id, game_type=game_type)
    return StartedSession(
        session_id=session.id,
        expires_at=session.expires_at,
        max_duration_ms=settings.minigame_max_duration_seconds * 1000,
    )


async def complete_session(
    db: AsyncSession,
    user_id: int,
    session_id: str,
    game_result: dict[str, Any] | None,
) -> SessionOutcome:
    """
    Close a session and decide whether the result may be rewarded.

    Checks, in order: ownership, still active, not expired, minimum duration.
    Expiry and too-fast completions are committed as terminal states so they
    cannot be retried. The caller credits the wallet when
    ``can_claim_reward`` is true.
    """
    normalized = _normalize_session_id(session_id)
    if normalized is None:
        return SessionOutcome(
            success=False,
            reason=INVALID_SESSION,
            message="Session not found or does not belong to user",
        )

    settings = get_settings()
    try:
        result = await db.execute(
            select(MinigameSession)
            .where(MinigameSession.id == normalized)
            .where(MinigameSession.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()

        if session is None:
            await db.rollback()
            return SessionOutcome(
                success=False,
                reason=INVALID_SESSION,
                message="Session not found or does not belong to user",
            )

        if session.status != STATUS_ACTIVE:
            status = session.status
            await db.rollback()
            return SessionOutcome(
                success=False,
                reason=SESSION_ALREADY_USED,
                message=f"Session already {status}",
                session_id=normalized,
            )

        now = datetime.now(timezone.utc)
        if now > session.expires_at:
            session.status = STATUS_EXPIRED
            await db.commit()
            logger.info("minigame_session_rejected", user_id=user_id, session_id=normalized, reason=SESSION_EXPIRED)
            return SessionOutcome(
                success=False,
                reason=SESSION_EXPIRED,
                message="Session has expired",
                session_id=normalized,
            )

        duration = now - session.started_at
        duration_ms = int(duration.total_seconds() * 1000)
        if duration < timedelta(seconds=settings.minigame_min_duration_seconds):
            session.status = STATUS_REJECTED
            session.completed_at = now
            await db.commit()
            logger.warning(
                "minigame_session_rejected",
                user_id=user_id,
                session_id=normalized,
                reason=TOO_FAST,
                duration_ms=duration_ms,
            )
            return SessionOutcome(
                success=False,
                reason=TOO_FAST,
                message="Game completed too quickly",
                session_id=normalized,
                game_duration_ms=duration_ms,
            )

        session.status = STATUS_COMPLETED
        session.completed_at = now
        session.result = game_result
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    can_claim = bool(game_result) and game_result.get("success") is True  # type: ignore[union-attr]
    logger.info(
        "minigame_session_completed",
        user_id=user_id,
        session_id=normalized,
        duration_ms=duration_ms,
        can_claim_reward=can_claim,
    )
    return SessionOutcome(
        success=True,
        session_id=normalized,
        game_duration_ms=duration_ms,
        can_claim_reward=can_claim,
    )


async def get_active_sessions(db: AsyncSession, user_id: int) -> list[MinigameSession]:
    result = await db.execute(
        select(MinigameSession)
        .where(MinigameSession.user_id == user_id)
        .where(MinigameSession.status == STATUS_ACTIVE)
        .order_by(MinigameSession.started_at.desc())
    )
    return list(result.scalars())


async def expire_stale_sessions(db: AsyncSession) -> int:
    """Flip every active session past its expiry to ``expired``. Returns the count."""
    try:
        result = await db.execute(
            update(MinigameSession)
            .where(MinigameSession.status == STATUS_ACTIVE)
            .where(MinigameSession.expires_at < datetime.now(timezone.utc))
            .values(status=STATUS_EXPIRED)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    count: int = result.rowcount  # type: ignore[attr-defined]
    if count:
        logger.info("minigame_sessions_expired", count=count)
    return count
