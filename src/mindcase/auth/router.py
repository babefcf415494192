"""Authentication router: all /api/auth/* endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from mindcase.auth.dependencies import (
    Principal,
    get_current_principal,
    get_current_user,
    require_guest,
    require_registered,
)
from mindcase.auth.devices import device_info_from_request
from mindcase.auth.password import PasswordStrengthError
from mindcase.auth.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    LoginHistoryEntry,
    LoginHistoryResponse,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    SessionListResponse,
    SessionResponse,
    UpgradeRequest,
    UserResponse,
)
from mindcase.auth.service import (
    EmailAlreadyRegisteredError,
    GuestUpgradeError,
    InvalidCredentialsError,
    authenticate_user,
    change_password,
    create_guest_user,
    get_login_history,
    record_login_event,
    register_user,
    upgrade_guest,
)
from mindcase.auth.tokens import (
    INVALID_REFRESH_TOKEN,
    TOKEN_REUSE_DETECTED,
    RefreshTokenError,
    TokenPair,
    family_belongs_to,
    get_refresh_token_by_raw,
    issue_token_pair,
    list_active_sessions,
    revoke_all_families,
    revoke_family,
    rotate_refresh_token,
)
from mindcase.config import get_settings
from mindcase.database import get_session
from mindcase.db.models import User

logger = structlog.get_logger()

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def _set_refresh_cookie(response: Response, raw_token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=raw_token,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite="lax",
    )


def _clear_refresh_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite="lax",
    )


def _incoming_refresh_token(request: Request, body: RefreshRequest | None) -> str | None:
    """Body wins (cross-origin clients); the httpOnly cookie is the same-origin fallback."""
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(get_settings().refresh_cookie_name)


def _auth_response(pair: TokenPair, response: Response) -> AuthResponse:
    _set_refresh_cookie(response, pair.refresh_token)
    return AuthResponse(
        user=UserResponse.model_validate(pair.user),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=get_settings().access_token_expire_minutes * 60,
    )


# ---------------------------------------------------------------------------
# Registration, login, guests
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
) -> AuthResponse:
    """Register with email + password. Returns a token pair and sets the refresh cookie."""
    try:
        user = await register_user(db, body.email, body.password, body.name)
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except EmailAlreadyRegisteredError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    device = device_info_from_request(request)
    pair = await issue_token_pair(db, user, device)
    await record_login_event(db, user.id, "login", method="register", device=device)
    await db.commit()
    return _auth_response(pair, response)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
) -> AuthResponse:
    """Login with email + password. Starts a new token family."""
    try:
        user = await authenticate_user(db, body.email, body.password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    device = device_info_from_request(request)
    pair = await issue_token_pair(db, user, device)
    await record_login_event(db, user.id, "login", method="email", device=device)
    await db.commit()
    logger.info("user_logged_in", user_id=user.id, platform=device.platform)
    return _auth_response(pair, response)


@router.post("/guest", response_model=AuthResponse, status_code=201)
async def guest(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
) -> AuthResponse:
    """Create an anonymous guest account and sign it in."""
    device = device_info_from_request(request)
    user = await create_guest_user(db)
    pair = await issue_token_pair(db, user, device)
    await record_login_event(db, user.id, "login", method="guest", device=device)
    await db.commit()
    return _auth_response(pair, response)


@router.post("/upgrade", response_model=AuthResponse)
async def upgrade(
    body: UpgradeRequest,
    request: Request,
    response: Response,
    principal: Principal = Depends(require_guest),
    db: AsyncSession = Depends(get_session),
) -> AuthResponse:
    """Upgrade the calling guest to a registered account, keeping progress and wallet."""
    try:
        user = await upgrade_guest(db, principal.id, body.email, body.password, body.name)
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except EmailAlreadyRegisteredError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except GuestUpgradeError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e

    # Tokens minted for the guest still carry the GUEST role
    await revoke_all_families(db, user.id)
    pair = await issue_token_pair(db, user, device_info_from_request(request))
    await db.commit()
    return _auth_response(pair, response)


# ---------------------------------------------------------------------------
# Refresh and logout
# ---------------------------------------------------------------------------


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> RefreshResponse | JSONResponse:
    """Rotate the refresh token. Reuse of a consumed token revokes the whole family."""
    raw_token = _incoming_refresh_token(request, body)
    try:
        if not raw_token:
            raise RefreshTokenError(INVALID_REFRESH_TOKEN)
        pair = await rotate_refresh_token(db, raw_token)
    except RefreshTokenError as e:
        status_code = 403 if e.reason == TOKEN_REUSE_DETECTED else 401
        error = JSONResponse(status_code=status_code, content={"detail": {"reason": e.reason}})
        _clear_refresh_cookie(error)
        return error

    _set_refresh_cookie(response, pair.refresh_token)
    return RefreshResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=get_settings().access_token_expire_minutes * 60,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Revoke the presented token's family and clear the cookie. Always succeeds."""
    raw_token = _incoming_refresh_token(request, body)
    if raw_token:
        token = await get_refresh_token_by_raw(db, raw_token)
        if token is not None:
            await revoke_family(db, token.family_id)
            await record_login_event(
                db, token.user_id, "logout", device=device_info_from_request(request)
            )
            await db.commit()
    _clear_refresh_cookie(response)
    return MessageResponse(message="Logged out")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    request: Request,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Revoke every token family of the caller (sign out everywhere)."""
    await revoke_all_families(db, principal.id)
    await record_login_event(
        db, principal.id, "logout", method="all_devices", device=device_info_from_request(request)
    )
    await db.commit()
    _clear_refresh_cookie(response)
    return MessageResponse(message="Logged out from all devices")


# ---------------------------------------------------------------------------
# Sessions and history
# ---------------------------------------------------------------------------


@router.get("/sessions", response_model=SessionListResponse)
async def sessions(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> SessionListResponse:
    """List open logins, one per token family."""
    current_family: str | None = None
    raw_token = request.cookies.get(get_settings().refresh_cookie_name)
    if raw_token:
        current = await get_refresh_token_by_raw(db, raw_token)
        current_family = current.family_id if current is not None else None

    tokens = await list_active_sessions(db, principal.id)
    return SessionListResponse(
        sessions=[
            SessionResponse(
                family_id=t.family_id,
                issued_at=t.issued_at,
                expires_at=t.expires_at,
                ip_address=t.ip_address,
                platform=t.platform,
                browser=t.browser,
                current=t.family_id == current_family,
            )
            for t in tokens
        ]
    )


@router.delete("/sessions/{family_id}", response_model=MessageResponse)
async def revoke_session(
    family_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Sign out one device. Families of other users are reported as not found."""
    if not await family_belongs_to(db, family_id, principal.id):
        raise HTTPException(status_code=404, detail="Session not found")

    await revoke_family(db, family_id, user_id=principal.id)
    await record_login_event(
        db, principal.id, "session_revoked", device=device_info_from_request(request)
    )
    await db.commit()
    return MessageResponse(message="Session revoked")


@router.get("/history", response_model=LoginHistoryResponse)
async def history(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_session),
) -> LoginHistoryResponse:
    """Newest 50 login / logout / revocation events."""
    entries = await get_login_history(db, principal.id)
    return LoginHistoryResponse(history=[LoginHistoryEntry.model_validate(e) for e in entries])


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


@router.post("/change-password", response_model=MessageResponse)
async def change_password_endpoint(
    body: ChangePasswordRequest,
    response: Response,
    _principal: Principal = Depends(require_registered),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Change password. Every device, including this one, must sign in again."""
    try:
        await change_password(db, user, body.current_password, body.new_password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    await db.commit()
    _clear_refresh_cookie(response)
    return MessageResponse(message="Password changed")


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)) -> UserResponse:
    """Return the authenticated caller's profile."""
    return UserResponse.model_validate(user)
