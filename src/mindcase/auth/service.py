"""
Account business logic.

Handles user creation (email, guest, social), credential checks, guest
upgrades, password changes and the login history audit trail. Token issuing
and rotation live in ``mindcase.auth.tokens``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from mindcase.auth.devices import DeviceInfo
from mindcase.auth.password import (
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from mindcase.auth.tokens import revoke_all_families
from mindcase.db.models import LoginHistory, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

ROLE_USER = "USER"
ROLE_GUEST = "GUEST"
GUEST_NAME = "Guest Detective"


class InvalidCredentialsError(ValueError):
    """Deliberately generic so callers cannot tell which part was wrong."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class EmailAlreadyRegisteredError(ValueError):
    def __init__(self, message: str = "Email already registered") -> None:
        super().__init__(message)


class GuestUpgradeError(PermissionError):
    """Raised when a non-guest account asks to be upgraded."""


@dataclass(frozen=True)
class SocialProfile:
    """Identity returned by an OAuth provider after the code exchange."""

    provider: str
    subject: str
    email: str | None = None
    name: str | None = None


_SOCIAL_COLUMNS = {"google": User.google_id, "apple": User.apple_id}


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Fetch a user by email (case-insensitive)."""
    result = await db.execute(select(User).where(func.lower(User.email) == normalize_email(email)))
    return result.scalar_one_or_none()


async def _flush_new_email(db: AsyncSession, email: str) -> None:
    """Flush pending changes, mapping a unique-email race to the domain error."""
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        logger.info("email_registration_conflict", email=email)
        raise EmailAlreadyRegisteredError from e


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


async def register_user(db: AsyncSession, email: str, password: str, name: str | None = None) -> User:
    """
    Register a new USER with email + password.

    Raises:
        PasswordStrengthError: If the password fails the length rules.
        EmailAlreadyRegisteredError: If the email is taken.
    """
    validate_password_strength(password)
    email = normalize_email(email)

    if await get_user_by_email(db, email) is not None:
        raise EmailAlreadyRegisteredError

    now = datetime.now(timezone.utc)
    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name,
        role=ROLE_USER,
        is_guest=False,
        created_at=now,
        last_login_at=now,
    )
    db.add(user)
    await _flush_new_email(db, email)
    logger.info("user_created", user_id=user.id, method="email")
    return user


async def authenticate_user(db: AsyncSession, email: str, password: str) -> User:
    """
    Check email + password.

    Unknown email, wrong password and social-only accounts (no password) all
    raise the same InvalidCredentialsError.
    """
    user = await get_user_by_email(db, email)
    if user is None or not user.password_hash:
        raise InvalidCredentialsError
    if not verify_password(password, user.password_hash):
        logger.info("login_failed", user_id=user.id)
        raise InvalidCredentialsError

    user.last_login_at = datetime.now(timezone.utc)
    if check_needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
        logger.info("password_rehashed", user_id=user.id)
    await db.flush()
    return user


async def create_guest_user(db: AsyncSession) -> User:
    """Create an anonymous GUEST account that can later be upgraded in place."""
    now = datetime.now(timezone.utc)
    user = User(
        name=GUEST_NAME,
        role=ROLE_GUEST,
        is_guest=True,
        created_at=now,
        last_login_at=now,
    )
    db.add(user)
    await db.flush()
    logger.info("user_created", user_id=user.id, method="guest")
    return user


async def upgrade_guest(
    db: AsyncSession,
    user_id: int,
    email: str,
    password: str,
    name: str | None = None,
) -> User:
    """
    Turn a GUEST into a USER, keeping the same id (and so the same wallet).

    Raises:
        GuestUpgradeError: If the account is missing or not a guest.
        PasswordStrengthError / EmailAlreadyRegisteredError: As for registration.
    """
    validate_password_strength(password)
    email = normalize_email(email)

    user = await get_user_by_id(db, user_id)
    if user is None or not user.is_guest:
        msg = "Guest account not found or already upgraded"
        raise GuestUpgradeError(msg)
    if await get_user_by_email(db, email) is not None:
        raise EmailAlreadyRegisteredError

    user.email = email
    user.password_hash = hash_password(password)
    user.name = name or user.name
    user.role = ROLE_USER
    user.is_guest = False
    user.updated_at = datetime.now(timezone.utc)
    await _flush_new_email(db, email)
    logger.info("guest_upgraded", user_id=user.id)
    return user


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> int:
    """
    Replace the user's password and sign out every device.

    Returns the number of refresh tokens revoked. The caller commits.

    Raises:
        InvalidCredentialsError: If ``current_password`` is wrong.
        PasswordStrengthError: If ``new_password`` fails the length rules.
    """
    if not user.password_hash or not verify_password(current_password, user.password_hash):
        msg = "Current password is incorrect"
        raise InvalidCredentialsError(msg)
    validate_password_strength(new_password)

    user.password_hash = hash_password(new_password)
    user.updated_at = datetime.now(timezone.utc)
    revoked = await revoke_all_families(db, user.id)
    logger.info("password_changed", user_id=user.id, tokens_revoked=revoked)
    return revoked


# ---------------------------------------------------------------------------
# Social login
# ---------------------------------------------------------------------------


async def resolve_social_user(db: AsyncSession, profile: SocialProfile) -> tuple[User, bool]:
    """
    Map a provider profile onto a local user.

    Match by provider subject first, then link to an existing account with the
    same email, otherwise create a password-less USER.

    Returns:
        Tuple of (user, created).
    """
    column = _SOCIAL_COLUMNS.get(profile.provider)
    if column is None:
        msg = f"Unsupported social provider: {profile.provider}"
        raise ValueError(msg)

    result = await db.execute(select(User).where(column == profile.subject))
    user = result.scalar_one_or_none()
    now = datetime.now(timezone.utc)
    if user is not None:
        user.last_login_at = now
        await db.flush()
        return user, False

    if profile.email:
        user = await get_user_by_email(db, profile.email)
        if user is not None:
            setattr(user, column.key, profile.subject)
            user.last_login_at = now
            user.updated_at = now
            await db.flush()
            logger.info("social_account_linked", user_id=user.id, provider=profile.provider)
            return user, False

    user = User(
        email=normalize_email(profile.email) if profile.email else None,
        name=profile.name,
        role=ROLE_USER,
        is_guest=False,
        created_at=now,
        last_login_at=now,
    )
    setattr(user, column.key, profile.subject)
    db.add(user)
    await db.flush()
    logger.info("user_created", user_id=user.id, method=profile.provider)
    return user, True


# ---------------------------------------------------------------------------
# Login history
# ---------------------------------------------------------------------------


async def record_login_event(
    db: AsyncSession,
    user_id: int,
    action: str,
    *,
    method: str | None = None,
    device: DeviceInfo | None = None,
) -> LoginHistory:
    """Append a login / logout / session_revoked row. The caller commits."""
    device = device or DeviceInfo()
    entry = LoginHistory(
        user_id=user_id,
        action=action,
        method=method,
        ip_address=device.ip_address,
        user_agent=device.user_agent,
        platform=device.platform,
        browser=device.browser,
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()
    return entry


async def get_login_history(db: AsyncSession, user_id: int, limit: int = 50) -> list[LoginHistory]:
    result = await db.execute(
        select(LoginHistory)
        .where(LoginHistory.user_id == user_id)
        .order_by(LoginHistory.created_at.desc(), LoginHistory.id.desc())
        .limit(limit)
    )
    return list(result.scalars())
