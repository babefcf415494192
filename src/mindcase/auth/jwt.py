"""
HS256 access tokens.

Access tokens are short-lived and self-contained: the claims carry everything
needed to build a ``Principal`` without a database round-trip. Refresh tokens
are opaque random strings handled in ``mindcase.auth.tokens``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from mindcase.config import get_settings


def create_access_token(
    user_id: int,
    role: str,
    *,
    is_guest: bool,
    email: str | None = None,
    name: str | None = None,
) -> str:
    """
    Create a short-lived access token.

    Args:
        user_id: The user's database ID (``uid`` claim).
        role: ``USER`` or ``GUEST``.
        is_guest: Guest flag, duplicated from role for older clients.
        email: The user's email, if any.
        name: Display name, if any.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "uid": user_id,
        "role": role,
        "is_guest": is_guest,
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, settings.require_jwt_secret(), algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> dict[str, Any]:
    """
    Verify and decode an access token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, from another
            issuer, or not an access token.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.require_jwt_secret(),
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != "access":
        msg = f"Expected token type 'access', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)
    if not isinstance(payload.get("uid"), int):
        msg = "Token is missing the uid claim"
        raise jwt.InvalidTokenError(msg)

    return payload
