"""Payment router: Stripe webhook and subscription status."""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mindcase.auth.dependencies import Principal, get_current_principal
from mindcase.config import get_settings
from mindcase.database import get_session
from mindcase.entitlements.service import get_user_entitlements
from mindcase.payments.stripe_webhooks import WebhookVerificationError, handle_event, parse_event
from mindcase.schemas import CamelModel

logger = structlog.get_logger()

router = APIRouter(prefix="/api/payment", tags=["Payment"])


class EntitlementResponse(CamelModel):
    provider: str
    provider_subscription_id: str
    product_id: str | None = None
    status: str
    expires_at: datetime


class SubscriptionStatusResponse(CamelModel):
    active: bool
    entitlements: list[EntitlementResponse]


@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> dict[str, bool]:
    """Stripe event sink. The raw body is needed for signature verification."""
    settings = get_settings()
    payload = await request.body()
    try:
        event = parse_event(
            payload,
            request.headers.get("stripe-signature"),
            settings.stripe_webhook_secret,
            settings.stripe_webhook_tolerance_seconds,
        )
    except WebhookVerificationError as e:
        logger.warning("stripe_webhook_rejected", error=str(e))
        raise HTTPException(status_code=400, detail=str(e)) from e

    action = await handle_event(db, event, settings.stripe_secret_key)
    logger.info("stripe_webhook_handled", event_type=event.get("type"), action=action)
    return {"received": True}


@router.get("/subscription/{user_id}", response_model=SubscriptionStatusResponse)
async def subscription_status(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> SubscriptionStatusResponse:
    """Active premium entitlements of the caller."""
    if principal.id != user_id:
        raise HTTPException(status_code=403, detail="Not allowed to view another user's subscription")
    entitlements = await get_user_entitlements(db, user_id)
    return SubscriptionStatusResponse(
        active=bool(entitlements),
        entitlements=[EntitlementResponse.model_validate(e) for e in entitlements],
    )
