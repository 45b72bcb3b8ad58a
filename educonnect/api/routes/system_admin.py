"""System admin authentication endpoints.

The system admin account is configured through the environment, not stored
in the database, and its tokens are a separate family from school tokens.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.api.deps import get_cache
from educonnect.core.database import get_db
from educonnect.schemas.auth import (
    SystemAdminLoginRequest,
    SystemAdminRefreshRequest,
    SystemAdminTokenResponse,
)
from educonnect.schemas.errors import ErrorResponse
from educonnect.services.auth_service import AuthService, SystemAdminSession
from educonnect.services.cache_service import CacheClient

router = APIRouter()


def _session_response(session: SystemAdminSession) -> SystemAdminTokenResponse:
    return SystemAdminTokenResponse(
        access_token=session.access_token,
        expires_in=session.expires_in,
        email=session.email,
    )


@router.post(
    "/login",
    response_model=SystemAdminTokenResponse,
    responses={401: {"model": ErrorResponse}},
)
async def system_admin_login(
    payload: SystemAdminLoginRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    session = await AuthService(db, cache).login_system_admin(payload.email, payload.password)
    return _session_response(session)


@router.post(
    "/refresh",
    response_model=SystemAdminTokenResponse,
    responses={401: {"model": ErrorResponse}},
)
async def system_admin_refresh(
    payload: SystemAdminRefreshRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    session = await AuthService(db, cache).refresh_system_admin(payload.token)
    return _session_response(session)
