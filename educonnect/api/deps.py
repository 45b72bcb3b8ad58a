"""FastAPI dependencies for authentication, authorization and collaborators."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.core.database import get_db
from educonnect.core.exceptions import AuthenticationError, AuthorizationError
from educonnect.models.enums import IdentityKind
from educonnect.models.user import User
from educonnect.services.auth_service import AuthService, Identity
from educonnect.services.cache_service import CacheClient
from educonnect.services.notification_service import NotificationService

# HTTP Bearer token security scheme; missing credentials are reported by us
security = HTTPBearer(auto_error=False)


def get_cache(request: Request) -> CacheClient:
    """Cache client stored on the app at startup, or a no-op one."""
    cache = getattr(request.app.state, "cache", None)
    return cache if cache is not None else CacheClient()


def get_notification_service() -> NotificationService:
    return NotificationService()


async def get_current_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
) -> Identity:
    """Resolve the bearer token to a system admin, school admin or user.

    Raises:
        AuthenticationError: no bearer token
        TokenError: token fails verification (401)
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")
    identity = await AuthService(db, cache).resolve_identity(credentials.credentials)
    if identity.school is not None:
        request.state.school_id = identity.school.school_id
    return identity


async def require_school_admin(identity: Identity = Depends(get_current_identity)) -> User:
    """Admin of a school; their school scopes every admin operation."""
    if identity.kind != IdentityKind.SCHOOL_ADMIN or identity.user is None:
        raise AuthorizationError("School administrator access required")
    return identity.user


async def require_system_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if identity.kind != IdentityKind.SYSTEM_ADMIN:
        raise AuthorizationError("System administrator access required")
    return identity
