"""Authentication endpoints: login, refresh, logout, registration, password reset."""

import logging

from fastapi import APIRouter, Body, Cookie, Depends, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.api.deps import get_cache, get_notification_service
from educonnect.core.config import get_settings
from educonnect.core.database import get_db
from educonnect.core.exceptions import AppError, AuthenticationError
from educonnect.core.structured_logging import log_json
from educonnect.schemas.auth import (
    CompleteRegistrationRequest,
    CompleteRegistrationResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SchoolResponse,
    TokenResponse,
    UserResponse,
)
from educonnect.schemas.errors import ErrorResponse
from educonnect.services.auth_service import AuthService, TokenPair
from educonnect.services.cache_service import CacheClient
from educonnect.services.notification_service import NotificationService
from educonnect.services.provisioning_service import ProvisioningService

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter()


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    """Deliver the refresh token as an HttpOnly cookie scoped to the auth routes."""
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=refresh_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.refresh_cookie_samesite,
        path=settings.refresh_cookie_path,
        domain=settings.refresh_cookie_domain,
        max_age=settings.jwt_refresh_token_expire_days * 24 * 60 * 60,
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.refresh_cookie_samesite,
        path=settings.refresh_cookie_path,
        domain=settings.refresh_cookie_domain,
    )


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(access_token=tokens.access_token, expires_in=tokens.expires_in)


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
async def login(
    login_data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Login for school admins, teachers and parents.

    Accounts still on a temporary password get ``redirect_to`` and no
    tokens. Otherwise the access token is returned in the body and the
    refresh token is set as an HttpOnly cookie.
    """
    result = await AuthService(db, cache).login(
        email=login_data.email,
        password=login_data.password,
        school_id=login_data.school_id,
    )
    await db.commit()

    if result.tokens is None:
        return LoginResponse(
            user=UserResponse.from_user(result.user),
            redirect_to=result.redirect_to,
            message="Please complete your registration",
        )

    set_refresh_cookie(response, result.tokens.refresh_token)
    return LoginResponse(
        user=UserResponse.from_user(result.user),
        school=SchoolResponse.model_validate(result.school),
        tokens=_token_response(result.tokens),
    )


@router.post(
    "/refresh",
    response_model=TokenResponse,
    responses={401: {"model": ErrorResponse}},
)
async def refresh_token(
    response: Response,
    body: RefreshRequest | None = Body(default=None),
    cookie_token: str | None = Cookie(None, alias=settings.refresh_cookie_name),
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Rotate the refresh token.

    The cookie is the primary source; a ``refresh_token`` body field is
    still accepted but deprecated. Any failure clears the cookie.
    """
    source = "cookie" if cookie_token else "body"
    token = cookie_token or (body.refresh_token if body else None)
    try:
        if not token:
            raise AuthenticationError("Refresh token not found")
        tokens, _ = await AuthService(db, cache).refresh(token, source=source)
    except AuthenticationError as exc:
        failed = JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.error, message=exc.message).model_dump(
                exclude_none=True
            ),
        )
        clear_refresh_cookie(failed)
        return failed

    if source == "body":
        log_json(logger, logging.INFO, "deprecated_refresh_body_used")
    set_refresh_cookie(response, tokens.refresh_token)
    return _token_response(tokens)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    response: Response,
    cookie_token: str | None = Cookie(None, alias=settings.refresh_cookie_name),
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Clear the refresh cookie. Always succeeds; session cleanup is best effort."""
    try:
        await AuthService(db, cache).logout_token(cookie_token)
    except (AppError, SQLAlchemyError) as exc:
        log_json(
            logger,
            logging.WARNING,
            "logout_cleanup_failed",
            error=str(exc),
            exception=exc.__class__.__name__,
        )
    clear_refresh_cookie(response)
    return LogoutResponse()


@router.post(
    "/complete-registration",
    response_model=CompleteRegistrationResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def complete_registration(
    payload: CompleteRegistrationRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    notifier: NotificationService = Depends(get_notification_service),
):
    """Exchange the temporary password for a real one and sign in."""
    result = await ProvisioningService(db, cache, notifier).complete_registration(
        email=payload.email,
        school_id=payload.school_id,
        current_password=payload.current_password,
        new_password=payload.new_password,
        profile=payload.profile_fields(),
    )

    set_refresh_cookie(response, result.tokens.refresh_token)
    return CompleteRegistrationResponse(
        user=UserResponse.from_user(result.user),
        tokens=_token_response(result.tokens),
    )


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    notifier: NotificationService = Depends(get_notification_service),
):
    """Request a reset link. The reply is identical whether or not the account exists."""
    message = await AuthService(db, cache, notifier).forgot_password(
        payload.email, payload.school_id
    )
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    await AuthService(db, cache).reset_password(payload.token, payload.new_password)
    await db.commit()
    return MessageResponse(message="Password has been reset successfully")
