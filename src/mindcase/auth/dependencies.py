"""FastAPI authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from mindcase.auth.jwt import verify_access_token
from mindcase.auth.service import ROLE_GUEST, get_user_by_id
from mindcase.database import get_session
from mindcase.db.models import User

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, decoded from the access token."""

    id: int
    role: str
    is_guest: bool
    email: str | None = None
    name: str | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, object]) -> Principal:
        return cls(
            id=int(claims["uid"]),  # type: ignore[call-overload]
            role=str(claims.get("role") or ROLE_GUEST),
            is_guest=bool(claims.get("is_guest")),
            email=claims.get("email"),  # type: ignore[arg-type]
            name=claims.get("name"),  # type: ignore[arg-type]
        )


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> Principal:
    """
    Verify the bearer access token and return the caller.

    Raises 401 when the header is missing or the token is invalid or expired.
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = verify_access_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e) or "Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    return Principal.from_claims(claims)


async def require_registered(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Reject guests with 403."""
    if principal.is_guest:
        raise HTTPException(status_code=403, detail="This action requires a registered account")
    return principal


async def require_guest(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Reject registered users with 403."""
    if not principal.is_guest:
        raise HTTPException(status_code=403, detail="This action is only available to guest accounts")
    return principal


async def get_current_user(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Load the caller's User row; 401 if it no longer exists."""
    user = await get_user_by_id(db, principal.id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user
