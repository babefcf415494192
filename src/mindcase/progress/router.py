"""Progress router: wallet, minigame sessions, unlocks and streaks under /api/progress."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mindcase.auth.dependencies import Principal, get_current_principal
from mindcase.config import get_settings
from mindcase.database import get_session
from mindcase.minigames.service import complete_session, get_active_sessions, start_session
from mindcase.progress.schemas import (
    AccessResponse,
    ActiveSessionListResponse,
    ActiveSessionResponse,
    CompleteMinigameRequest,
    CompleteMinigameResponse,
    SessionOutcomeResponse,
    SpendRequest,
    StartMinigameRequest,
    StartMinigameResponse,
    StreakActivityResponse,
    StreakResponse,
    StreakSyncRequest,
    TransactionListResponse,
    TransactionResponse,
    UnlockRequest,
    UnlockResultResponse,
    UnlocksResponse,
    WalletResponse,
    WalletResultResponse,
)
from mindcase.streaks.service import get_streak, record_activity, sync_streak
from mindcase.unlocks.service import get_unlocked_content, has_access, unlock_content
from mindcase.wallet.service import (
    EARN_MINIGAME,
    SPEND_PURPOSES,
    earn,
    get_transactions,
    get_wallet_summary,
    spend,
)

router = APIRouter(prefix="/api/progress", tags=["Progress"])


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


@router.get("/wallet", response_model=WalletResponse)
async def wallet(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> WalletResponse:
    """Balance and today's earning allowance."""
    summary = await get_wallet_summary(db, principal.id)
    return WalletResponse.model_validate(summary)


@router.post("/wallet/spend", response_model=WalletResultResponse)
async def wallet_spend(
    body: SpendRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> WalletResultResponse:
    """Spend tokens on hints, retries or unlocks. Insufficient balance is a 200 with a reason."""
    if body.purpose not in SPEND_PURPOSES:
        raise HTTPException(status_code=400, detail=f"Unknown purpose: {body.purpose}")
    result = await spend(db, principal.id, body.amount, body.purpose, body.metadata)
    return WalletResultResponse.model_validate(result)


@router.get("/transactions", response_model=TransactionListResponse)
async def transactions(
    limit: int = Query(50, ge=1),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> TransactionListResponse:
    """Newest-first wallet audit log; ``limit`` is capped server-side."""
    rows = await get_transactions(db, principal.id, min(limit, get_settings().transactions_max_limit))
    return TransactionListResponse(
        transactions=[
            TransactionResponse(
                id=t.id,
                type=t.type,
                amount=t.amount,
                balance_after=t.balance_after,
                metadata=t.details or {},
                created_at=t.created_at,
            )
            for t in rows
        ]
    )


# ---------------------------------------------------------------------------
# Minigames
# ---------------------------------------------------------------------------


@router.post("/minigame/start", response_model=StartMinigameResponse)
async def minigame_start(
    body: StartMinigameRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> StartMinigameResponse:
    """Open an anti-cheat session; its id must be presented to claim a reward."""
    started = await start_session(db, principal.id, body.game_type)
    return StartMinigameResponse.model_validate(started)


@router.post("/minigame/complete", response_model=CompleteMinigameResponse)
async def minigame_complete(
    body: CompleteMinigameRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> CompleteMinigameResponse:
    """Close a session and, for a successful game, credit the minigame reward."""
    outcome = await complete_session(db, principal.id, body.session_id, body.result)
    session = SessionOutcomeResponse.model_validate(outcome)
    if not outcome.success:
        return CompleteMinigameResponse(success=False, reason=outcome.reason, session=session)

    reward = None
    if outcome.can_claim_reward:
        earned = await earn(
            db,
            principal.id,
            get_settings().minigame_reward_tokens,
            EARN_MINIGAME,
            {"sessionId": outcome.session_id, "gameType": body.result.get("gameType")},
        )
        reward = WalletResultResponse.model_validate(earned)
    return CompleteMinigameResponse(success=True, session=session, reward=reward)


@router.get("/minigame/active", response_model=ActiveSessionListResponse)
async def minigame_active(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> ActiveSessionListResponse:
    sessions = await get_active_sessions(db, principal.id)
    return ActiveSessionListResponse(sessions=[ActiveSessionResponse.model_validate(s) for s in sessions])


# ---------------------------------------------------------------------------
# Unlocks
# ---------------------------------------------------------------------------


@router.get("/unlocks", response_model=UnlocksResponse)
async def unlocks(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> UnlocksResponse:
    return UnlocksResponse(**await get_unlocked_content(db, principal.id))


@router.post("/unlock", response_model=UnlockResultResponse)
async def unlock(
    body: UnlockRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> UnlockResultResponse:
    """Buy permanent access to a puzzle or topic. Charges at most once per item."""
    result = await unlock_content(db, principal.id, body.content_type, body.content_id)
    return UnlockResultResponse.model_validate(result)


@router.get("/access/{content_type}/{content_id}", response_model=AccessResponse)
async def access(
    content_type: str,
    content_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> AccessResponse:
    check = await has_access(db, principal.id, content_type, content_id)
    return AccessResponse.model_validate(check)


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


@router.get("/streak", response_model=StreakResponse)
async def streak(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> StreakResponse:
    return StreakResponse.model_validate(await get_streak(db, principal.id))


@router.post("/streak/activity", response_model=StreakActivityResponse)
async def streak_activity(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> StreakActivityResponse:
    """Count today (UTC) toward the caller's streak. Repeat calls on one day are no-ops."""
    return StreakActivityResponse.model_validate(await record_activity(db, principal.id))


@router.post("/streak/sync", response_model=StreakResponse)
async def streak_sync(
    body: StreakSyncRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> StreakResponse:
    """Merge a streak tracked offline by the client; the longer live streak wins."""
    try:
        summary = await sync_streak(db, principal.id, body.current_streak, body.last_activity_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return StreakResponse.model_validate(summary)
