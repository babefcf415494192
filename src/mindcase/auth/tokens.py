"""
Refresh token rotation with family-based reuse detection.

Every login starts a new *family*. Each refresh consumes the presented token
and issues its successor in the same family. Presenting a token that was
already consumed (or revoked) means someone else holds a copy, so the whole
family is revoked before the error is returned.

Only the SHA-256 hash of a refresh token is stored.
"""

from __future__ import annotations

import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, select, update

from mindcase.auth.devices import DeviceInfo
from mindcase.auth.jwt import create_access_token
from mindcase.config import get_settings
from mindcase.db.models import RefreshToken, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

INVALID_REFRESH_TOKEN = "invalid_refresh_token"
TOKEN_REUSE_DETECTED = "token_reuse_detected"
REFRESH_TOKEN_EXPIRED = "refresh_token_expired"


class RefreshTokenError(Exception):
    """Refresh failed; ``reason`` is the machine-readable code returned to clients."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class TokenPair:
    user: User
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    family_id: str


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw refresh token."""
    return hashlib.sha256(raw_token.encode()).hexdigest()


def generate_refresh_token() -> str:
    """80 hex chars (40 random bytes)."""
    return secrets.token_hex(40)


def access_token_for(user: User) -> str:
    return create_access_token(
        user.id,
        user.role,
        is_guest=user.is_guest,
        email=user.email,
        name=user.name,
    )


async def _store_refresh_token(
    db: AsyncSession,
    user_id: int,
    family_id: str,
    device: DeviceInfo,
) -> tuple[RefreshToken, str]:
    settings = get_settings()
    raw_token = generate_refresh_token()
    now = datetime.now(timezone.utc)
    token = RefreshToken(
        id=str(uuid.uuid4()),
        user_id=user_id,
        token_hash=hash_token(raw_token),
        family_id=family_id,
        issued_at=now,
        expires_at=now + timedelta(days=settings.refresh_token_expire_days),
        ip_address=device.ip_address,
        user_agent=device.user_agent,
        platform=device.platform,
        browser=device.browser,
    )
    db.add(token)
    await db.flush()
    return token, raw_token


async def issue_token_pair(
    db: AsyncSession,
    user: User,
    device: DeviceInfo | None = None,
) -> TokenPair:
    """
    Issue an access token and a refresh token in a brand-new family.

    Used for fresh logins, registration, guest creation and upgrades. The
    caller commits.
    """
    family_id = str(uuid.uuid4())
    token, raw_token = await _store_refresh_token(db, user.id, family_id, device or DeviceInfo())
    logger.info("token_family_started", user_id=user.id, family_id=family_id)
    return TokenPair(
        user=user,
        access_token=access_token_for(user),
        refresh_token=raw_token,
        refresh_expires_at=token.expires_at,
        family_id=family_id,
    )


async def rotate_refresh_token(db: AsyncSession, raw_token: str) -> TokenPair:
    """
    Consume ``raw_token`` and return its successor in the same family.

    The presented token is row-locked for the whole check-and-rotate step, so
    two concurrent refreshes of the same token cannot both succeed.

    Raises:
        RefreshTokenError: ``invalid_refresh_token`` when unknown,
            ``token_reuse_detected`` when already consumed (the family is
            revoked and committed first), ``refresh_token_expired`` when past
            its expiry.
    """
    token_hash = hash_token(raw_token)
    try:
        result = await db.execute(
            select(RefreshToken)
            .where(RefreshToken.token_hash == token_hash)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        stored = result.scalar_one_or_none()
        if stored is None:
            raise RefreshTokenError(INVALID_REFRESH_TOKEN)

        if stored.is_revoked or stored.replaced_by is not None:
            revoked = await revoke_family(db, stored.family_id)
            await db.commit()
            logger.warning(
                "refresh_token_reuse_detected",
                user_id=stored.user_id,
                family_id=stored.family_id,
                tokens_revoked=revoked,
            )
            raise RefreshTokenError(TOKEN_REUSE_DETECTED)

        now = datetime.now(timezone.utc)
        if now > stored.expires_at:
            raise RefreshTokenError(REFRESH_TOKEN_EXPIRED)

        user = await db.get(User, stored.user_id)
        if user is None:
            raise RefreshTokenError(INVALID_REFRESH_TOKEN)

        device = DeviceInfo(
            ip_address=stored.ip_address,
            user_agent=stored.user_agent,
            platform=stored.platform,
            browser=stored.browser,
        )
        new_token, new_raw = await _store_refresh_token(db, user.id, stored.family_id, device)

        stored.replaced_by = new_token.id
        stored.is_revoked = True
        stored.revoked_at = now
        await db.commit()
    except RefreshTokenError as exc:
        if exc.reason != TOKEN_REUSE_DETECTED:
            await db.rollback()
        raise
    except Exception:
        await db.rollback()
        raise

    logger.info("refresh_token_rotated", user_id=user.id, family_id=stored.family_id)
    return TokenPair(
        user=user,
        access_token=access_token_for(user),
        refresh_token=new_raw,
        refresh_expires_at=new_token.expires_at,
        family_id=stored.family_id,
    )


async def get_refresh_token_by_raw(db: AsyncSession, raw_token: str) -> RefreshToken | None:
    result = await db.execute(select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw_token)))
    return result.scalar_one_or_none()


async def revoke_family(db: AsyncSession, family_id: str, user_id: int | None = None) -> int:
    """Revoke every live token in a family. Returns the number of rows changed.

    When ``user_id`` is given the family must belong to that user. The caller
    commits.
    """
    stmt = (
        update(RefreshToken)
        .where(RefreshToken.family_id == family_id)
        .where(RefreshToken.is_revoked == False)  # noqa: E712
    )
    if user_id is not None:
        stmt = stmt.where(RefreshToken.user_id == user_id)
    result = await db.execute(stmt.values(is_revoked=True, revoked_at=datetime.now(timezone.utc)))
    await db.flush()
    count: int = result.rowcount  # type: ignore[attr-defined]
    if count:
        logger.info("token_family_revoked", family_id=family_id, tokens_revoked=count)
    return count


async def revoke_all_families(db: AsyncSession, user_id: int) -> int:
    """Revoke every refresh token the user holds. The caller commits."""
    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=datetime.now(timezone.utc))
    )
    await db.flush()
    count: int = result.rowcount  # type: ignore[attr-defined]
    logger.info("token_families_revoked", user_id=user_id, tokens_revoked=count)
    return count


async def family_belongs_to(db: AsyncSession, family_id: str, user_id: int) -> bool:
    result = await db.execute(
        select(RefreshToken.id)
        .where(RefreshToken.family_id == family_id)
        .where(RefreshToken.user_id == user_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_active_sessions(db: AsyncSession, user_id: int) -> list[RefreshToken]:
    """The live token of each family the user still has open, newest first."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.is_revoked == False)  # noqa: E712
        .where(RefreshToken.expires_at > now)
        .order_by(RefreshToken.issued_at.desc())
    )
    sessions: list[RefreshToken] = []
    seen: set[str] = set()
    for token in result.scalars():
        if token.family_id in seen:
            continue
        seen.add(token.family_id)
        sessions.append(token)
    return sessions


async def purge_expired_refresh_tokens(db: AsyncSession) -> int:
    """Delete refresh tokens past their expiry. Returns the number deleted."""
    now = datetime.now(timezone.utc)
    # Successor links point at rows that may be purged in the same sweep
    await db.execute(
        update(RefreshToken)
        .where(RefreshToken.replaced_by.in_(select(RefreshToken.id).where(RefreshToken.expires_at < now)))
        .values(replaced_by=None)
    )
    result = await db.execute(delete(RefreshToken).where(RefreshToken.expires_at < now))
    await db.commit()
    count: int = result.rowcount  # type: ignore[attr-defined]
    return count
