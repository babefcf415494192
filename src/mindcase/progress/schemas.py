"""Request/response schemas for the /api/progress endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import Field

from mindcase.schemas import CamelModel
from mindcase.wallet.service import SPEND_UNLOCK


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


class WalletResponse(CamelModel):
    balance: int
    total_earned: int
    total_spent: int
    tokens_earned_today: int
    daily_limit: int
    remaining_today: int


class WalletResultResponse(CamelModel):
    """Outcome of an earn or spend; ``reason`` is set when ``success`` is false."""

    success: bool
    balance: int
    reason: str | None = None
    tokens_awarded: int = 0
    tokens_spent: int = 0
    tokens_earned_today: int | None = None
    daily_limit: int | None = None
    required: int | None = None


class SpendRequest(CamelModel):
    amount: int = Field(..., gt=0, le=10_000)
    purpose: str = SPEND_UNLOCK
    metadata: dict[str, Any] = Field(default_factory=dict)


class TransactionResponse(CamelModel):
    id: int
    type: str
    amount: int
    balance_after: int
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class TransactionListResponse(CamelModel):
    transactions: list[TransactionResponse]


# ---------------------------------------------------------------------------
# Minigames
# ---------------------------------------------------------------------------


class StartMinigameRequest(CamelModel):
    game_type: str = Field(..., min_length=1, max_length=64)


class StartMinigameResponse(CamelModel):
    session_id: str
    expires_at: datetime
    max_duration_ms: int


class CompleteMinigameRequest(CamelModel):
    session_id: str = Field(..., min_length=1, max_length=64)
    result: dict[str, Any]


class SessionOutcomeResponse(CamelModel):
    success: bool
    reason: str | None = None
    message: str | None = None
    session_id: str | None = None
    game_duration_ms: int | None = None
    can_claim_reward: bool = False


class CompleteMinigameResponse(CamelModel):
    """``reward`` is present only when the session allowed a claim."""

    success: bool
    reason: str | None = None
    session: SessionOutcomeResponse
    reward: WalletResultResponse | None = None


class ActiveSessionResponse(CamelModel):
    id: str
    game_type: str
    started_at: datetime
    expires_at: datetime


class ActiveSessionListResponse(CamelModel):
    sessions: list[ActiveSessionResponse]


# ---------------------------------------------------------------------------
# Unlocks
# ---------------------------------------------------------------------------


class UnlockRequest(CamelModel):
    content_type: str = Field(..., min_length=1, max_length=16)
    content_id: str = Field(..., min_length=1, max_length=128)


class UnlockResultResponse(CamelModel):
    success: bool
    reason: str | None = None
    content_type: str | None = None
    content_id: str | None = None
    tokens_spent: int = 0
    balance: int | None = None
    required: int | None = None


class UnlocksResponse(CamelModel):
    puzzles: list[str]
    topics: list[str]


class AccessResponse(CamelModel):
    has_access: bool
    reason: str
    cost: int | None = None


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class StreakResponse(CamelModel):
    current_streak: int
    max_streak: int
    last_activity_date: date | None = None


class StreakActivityResponse(StreakResponse):
    streak_increased: bool


class StreakSyncRequest(CamelModel):
    current_streak: int = Field(..., ge=0, le=100_000)
    last_activity_date: date
