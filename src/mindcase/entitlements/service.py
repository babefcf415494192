"""
Entitlement ledger.

Premium access is a set of subscription rows written by billing webhooks.
Webhooks are delivered at least once, so ``grant_entitlement`` is an upsert
keyed on ``(user_id, provider_subscription_id)``; a revoked row is only
reactivated by a grant for a later period. Rows are revoked, never
deleted, to keep the audit trail.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import and_, case, func, select, update

from mindcase.database import dialect_insert
from mindcase.db.models import UserSubscription

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

STATUS_ACTIVE = "active"
STATUS_REVOKED = "revoked"


@dataclass(frozen=True)
class EntitlementGrant:
    user_id: int
    provider: str
    provider_subscription_id: str
    expires_at: datetime
    product_id: str | None = None


async def grant_entitlement(db: AsyncSession, grant: EntitlementGrant) -> UserSubscription:
    """Insert or refresh a subscription row; replaying the same grant is a no-op."""
    now = datetime.now(timezone.utc)
    insert = dialect_insert(db, UserSubscription).values(
        user_id=grant.user_id,
        provider=grant.provider,
        provider_subscription_id=grant.provider_subscription_id,
        product_id=grant.product_id,
        status=STATUS_ACTIVE,
        expires_at=grant.expires_at,
        created_at=now,
        updated_at=now,
    )
    # A revoked row only reactivates for a later billing period
    stays_revoked = and_(
        UserSubscription.status == STATUS_REVOKED,
        insert.excluded.expires_at <= UserSubscription.expires_at,
    )
    stmt = insert.on_conflict_do_update(
        index_elements=["user_id", "provider_subscription_id"],
        set_={
            "status": case((stays_revoked, UserSubscription.status), else_=STATUS_ACTIVE),
            "expires_at": case((stays_revoked, UserSubscription.expires_at), else_=insert.excluded.expires_at),
            "product_id": func.coalesce(insert.excluded.product_id, UserSubscription.product_id),
            "updated_at": now,
        },
    )
    try:
        await db.execute(stmt)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    result = await db.execute(
        select(UserSubscription)
        .where(UserSubscription.user_id == grant.user_id)
        .where(UserSubscription.provider_subscription_id == grant.provider_subscription_id)
        .execution_options(populate_existing=True)
    )
    subscription = result.scalar_one()
    logger.info(
        "entitlement_granted",
        user_id=grant.user_id,
        provider=grant.provider,
        provider_subscription_id=grant.provider_subscription_id,
        expires_at=grant.expires_at.isoformat(),
        status=subscription.status,
    )
    return subscription


async def revoke_entitlement(db: AsyncSession, user_id: int, provider_subscription_id: str) -> int:
    """Mark a subscription revoked. Returns the number of rows changed."""
    try:
        result = await db.execute(
            update(UserSubscription)
            .where(UserSubscription.user_id == user_id)
            .where(UserSubscription.provider_subscription_id == provider_subscription_id)
            .values(status=STATUS_REVOKED, updated_at=datetime.now(timezone.utc))
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    count: int = result.rowcount  # type: ignore[attr-defined]
    logger.info(
        "entitlement_revoked",
        user_id=user_id,
        provider_subscription_id=provider_subscription_id,
        rows=count,
    )
    return count


async def get_user_entitlements(db: AsyncSession, user_id: int) -> list[UserSubscription]:
    """Active, unexpired subscriptions only."""
    result = await db.execute(
        select(UserSubscription)
        .where(UserSubscription.user_id == user_id)
        .where(UserSubscription.status == STATUS_ACTIVE)
        .where(UserSubscription.expires_at > datetime.now(timezone.utc))
        .order_by(UserSubscription.expires_at.desc())
    )
    return list(result.scalars())


async def is_premium(db: AsyncSession, user_id: int) -> bool:
    result = await db.execute(
        select(func.count())
        .select_from(UserSubscription)
        .where(UserSubscription.user_id == user_id)
        .where(UserSubscription.status == STATUS_ACTIVE)
        .where(UserSubscription.expires_at > datetime.now(timezone.utc))
    )
    return (result.scalar() or 0) > 0
