"""Rewarded-ad router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from mindcase.ads.service import INVALID_REWARD_ITEM, grant_ad_reward
from mindcase.auth.dependencies import Principal, get_current_principal
from mindcase.database import get_session
from mindcase.schemas import CamelModel

router = APIRouter(prefix="/api/ads", tags=["Ads"])


class AdRewardRequest(CamelModel):
    transaction_id: str = Field(..., min_length=1, max_length=255)
    reward_item: str = "token"


class AdRewardResponse(CamelModel):
    success: bool
    balance: int
    reward: int = 0
    duplicate: bool = False


@router.post("/reward", response_model=AdRewardResponse)
async def reward(
    body: AdRewardRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> AdRewardResponse:
    """Credit a watched rewarded ad. Replaying a transaction id credits nothing."""
    result = await grant_ad_reward(db, principal.id, body.transaction_id, body.reward_item)
    if result.reason == INVALID_REWARD_ITEM:
        raise HTTPException(status_code=400, detail=f"Unknown reward item: {body.reward_item}")
    return AdRewardResponse.model_validate(result)
