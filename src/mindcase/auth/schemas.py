"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import EmailStr, Field, field_validator

from mindcase.schemas import CamelModel


class RegisterRequest(CamelModel):
    """Email registration request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    name: str | None = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class LoginRequest(CamelModel):
    """Login with email + password."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class UpgradeRequest(RegisterRequest):
    """Guest to registered account upgrade."""


class RefreshRequest(CamelModel):
    """Refresh token in the body; falls back to the cookie when omitted."""

    refresh_token: str | None = None


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)


class UserResponse(CamelModel):
    id: int
    email: str | None = None
    name: str | None = None
    role: str
    is_guest: bool
    created_at: datetime | None = None
    last_login_at: datetime | None = None


class AuthResponse(CamelModel):
    """Returned by register / login / guest / upgrade."""

    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class SessionResponse(CamelModel):
    """One open login (refresh token family)."""

    family_id: str
    issued_at: datetime
    expires_at: datetime
    ip_address: str | None = None
    platform: str | None = None
    browser: str | None = None
    current: bool = False

    @field_validator("ip_address", mode="before")
    @classmethod
    def ip_to_str(cls, v: Any) -> str | None:  # noqa: ANN401
        """asyncpg returns INET values as ipaddress objects."""
        return None if v is None else str(v)


class SessionListResponse(CamelModel):
    sessions: list[SessionResponse]


class LoginHistoryEntry(CamelModel):
    action: str
    method: str | None = None
    ip_address: str | None = None
    platform: str | None = None
    browser: str | None = None
    created_at: datetime

    @field_validator("ip_address", mode="before")
    @classmethod
    def ip_to_str(cls, v: Any) -> str | None:  # noqa: ANN401
        return None if v is None else str(v)


class LoginHistoryResponse(CamelModel):
    history: list[LoginHistoryEntry]


class MessageResponse(CamelModel):
    message: str
