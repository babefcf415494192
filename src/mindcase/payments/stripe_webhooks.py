"""
Stripe webhook handling.

Only the effect of billing events on the entitlement ledger lives here:
checkout creation and cancellation call Stripe's API and are handled by the
frontend's billing flow. Stripe delivers events at least once; every branch
relies on the ledger's idempotent grant/revoke.

The checkout session is the only event that names the MindCase user
(``client_reference_id``). It is recorded in ``stripe_checkouts`` so later
``customer.subscription.*`` events, which carry Stripe ids only, resolve to
the same user. With a Stripe API key configured the checkout's subscription
is fetched at once and granted without waiting for those events.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import stripe
import structlog
from sqlalchemy import select

from mindcase.database import dialect_insert
from mindcase.db.models import StripeCheckout, UserSubscription
from mindcase.entitlements.service import EntitlementGrant, grant_entitlement, revoke_entitlement

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

PROVIDER = "stripe"

_GRANT_STATUSES = frozenset({"active", "trialing"})
_REVOKE_STATUSES = frozenset({"canceled", "unpaid", "incomplete_expired"})


class WebhookVerificationError(ValueError):
    """Payload could not be authenticated or parsed."""


def parse_event(payload: bytes, signature: str | None, secret: str, tolerance: int = 300) -> dict[str, Any]:
    """
    Verify the ``Stripe-Signature`` header (when a secret is configured) and
    decode the event body.

    Without a secret the payload is accepted unverified, which is only meant
    for local development.
    """
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        msg = "Webhook payload is not valid UTF-8"
        raise WebhookVerificationError(msg) from e

    if secret:
        if not signature:
            msg = "Missing Stripe-Signature header"
            raise WebhookVerificationError(msg)
        try:
            stripe.WebhookSignature.verify_header(body, signature, secret, tolerance)
        except stripe.SignatureVerificationError as e:
            msg = f"Webhook signature verification failed: {e}"
            raise WebhookVerificationError(msg) from e
    else:
        logger.warning("stripe_webhook_unverified")

    try:
        event = json.loads(body)
    except json.JSONDecodeError as e:
        msg = "Webhook payload is not valid JSON"
        raise WebhookVerificationError(msg) from e
    if not isinstance(event, dict) or "type" not in event:
        msg = "Webhook payload is not a Stripe event"
        raise WebhookVerificationError(msg)
    return event


async def fetch_subscription(subscription_id: str, api_key: str) -> dict[str, Any]:
    """Retrieve a subscription from the Stripe API as a plain dict."""
    subscription = await stripe.Subscription.retrieve_async(subscription_id, api_key=api_key)
    return subscription.to_dict()


def _user_id(obj: dict[str, Any]) -> int | None:
    raw = obj.get("client_reference_id") or (obj.get("metadata") or {}).get("userId")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _period_end(subscription: dict[str, Any]) -> datetime | None:
    """``current_period_end`` moved onto subscription items in newer API versions."""
    end = subscription.get("current_period_end")
    if end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            end = items[0].get("current_period_end")
    if end is None:
        return None
    return datetime.fromtimestamp(int(end), tz=timezone.utc)


def _product_id(subscription: dict[str, Any]) -> str | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or items[0].get("plan") or {}
    return price.get("id")


async def _record_checkout(
    db: AsyncSession,
    user_id: int,
    subscription_id: str,
    customer_id: str | None,
    session_id: str | None,
) -> None:
    """Remember who bought ``subscription_id``; the first checkout recorded wins."""
    stmt = (
        dialect_insert(db, StripeCheckout)
        .values(
            user_id=user_id,
            subscription_id=subscription_id,
            customer_id=customer_id,
            session_id=session_id,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["subscription_id"])
    )
    try:
        await db.execute(stmt)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("stripe_checkout_recorded", user_id=user_id, subscription_id=subscription_id)


async def _resolve_user(db: AsyncSession, subscription: dict[str, Any]) -> int | None:
    """
    Find the user a subscription belongs to.

    Subscription metadata first, then the recorded checkout (by subscription,
    then by customer), then an entitlement already granted for it.
    """
    user_id = _user_id(subscription)
    if user_id is not None:
        return user_id

    subscription_id = subscription.get("id")
    if subscription_id:
        result = await db.execute(
            select(StripeCheckout.user_id).where(StripeCheckout.subscription_id == subscription_id)
        )
        user_id = result.scalar_one_or_none()
        if user_id is not None:
            return user_id

    customer_id = subscription.get("customer")
    if isinstance(customer_id, str) and customer_id:
        result = await db.execute(
            select(StripeCheckout.user_id)
            .where(StripeCheckout.customer_id == customer_id)
            .order_by(StripeCheckout.created_at.desc())
            .limit(1)
        )
        user_id = result.scalar_one_or_none()
        if user_id is not None:
            return user_id

    if subscription_id:
        result = await db.execute(
            select(UserSubscription.user_id)
            .where(UserSubscription.provider == PROVIDER)
            .where(UserSubscription.provider_subscription_id == subscription_id)
            .limit(1)
        )
        return result.scalar_one_or_none()
    return None


async def _grant_from_subscription(db: AsyncSession, subscription: dict[str, Any], user_id: int | None) -> str:
    expires_at = _period_end(subscription)
    if user_id is None or expires_at is None or not subscription.get("id"):
        logger.warning("stripe_subscription_incomplete", subscription_id=subscription.get("id"), user_id=user_id)
        return "skipped"
    await grant_entitlement(
        db,
        EntitlementGrant(
            user_id=user_id,
            provider=PROVIDER,
            provider_subscription_id=subscription["id"],
            product_id=_product_id(subscription),
            expires_at=expires_at,
        ),
    )
    return "granted"


async def _checkout_completed(db: AsyncSession, session: dict[str, Any], api_key: str) -> str:
    user_id = _user_id(session)
    subscription = session.get("subscription")
    subscription_id = subscription.get("id") if isinstance(subscription, dict) else subscription
    if user_id is None or not subscription_id:
        logger.warning("stripe_checkout_incomplete", session_id=session.get("id"), user_id=user_id)
        return "skipped"

    customer = session.get("customer")
    await _record_checkout(
        db,
        user_id,
        subscription_id,
        customer if isinstance(customer, str) else None,
        session.get("id"),
    )

    if isinstance(subscription, dict):
        return await _grant_from_subscription(db, subscription, user_id)
    if not api_key:
        logger.info("stripe_checkout_awaiting_subscription", user_id=user_id, subscription_id=subscription_id)
        return "linked"
    try:
        fetched = await fetch_subscription(subscription_id, api_key)
    except stripe.StripeError as e:
        # The subscription events grant through the recorded checkout instead
        logger.warning("stripe_subscription_fetch_failed", subscription_id=subscription_id, error=str(e))
        return "linked"
    return await _grant_from_subscription(db, fetched, user_id)


async def handle_event(db: AsyncSession, event: dict[str, Any], api_key: str = "") -> str:
    """
    Apply one Stripe event to the entitlement ledger.

    ``api_key`` is the Stripe secret key used to fetch a checkout's
    subscription; without it checkouts are only recorded. Returns a short
    action label (``granted``, ``revoked``, ``linked``, ``logged``,
    ``skipped`` or ``ignored``) for logging and tests.
    """
    event_type = event.get("type")
    obj: dict[str, Any] = (event.get("data") or {}).get("object") or {}
    logger.info("stripe_webhook_received", event_type=event_type, event_id=event.get("id"))

    if event_type == "checkout.session.completed":
        return await _checkout_completed(db, obj, api_key)

    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        status = obj.get("status")
        if status in _GRANT_STATUSES:
            return await _grant_from_subscription(db, obj, await _resolve_user(db, obj))
        if status in _REVOKE_STATUSES:
            return await _revoke(db, obj)
        return "ignored"

    if event_type == "customer.subscription.deleted":
        return await _revoke(db, obj)

    if event_type == "invoice.payment_failed":
        logger.warning(
            "stripe_payment_failed",
            customer=obj.get("customer"),
            subscription_id=obj.get("subscription"),
        )
        return "logged"

    return "ignored"


async def _revoke(db: AsyncSession, subscription: dict[str, Any]) -> str:
    user_id = await _resolve_user(db, subscription)
    if user_id is None or not subscription.get("id"):
        logger.warning("stripe_subscription_incomplete", subscription_id=subscription.get("id"))
        return "skipped"
    await revoke_entitlement(db, user_id, subscription["id"])
    return "revoked"
