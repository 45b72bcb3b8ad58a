"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from educonnect.api.deps import get_cache, get_current_identity
from educonnect.api.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from educonnect.api.routes import auth, invitations, metrics, system_admin
from educonnect.core.config import get_settings
from educonnect.core.database import engine
from educonnect.core.exceptions import AppError
from educonnect.core.redis import create_redis_client
from educonnect.core.request_context import get_request_id
from educonnect.core.structured_logging import log_json
from educonnect.models import Base
from educonnect.schemas.auth import MeResponse, SchoolResponse, UserResponse
from educonnect.schemas.errors import ErrorResponse
from educonnect.services.auth_service import Identity
from educonnect.services.cache_service import CacheClient

logger = logging.getLogger(__name__)
settings = get_settings()
docs_enabled = settings.api_docs_enabled
if docs_enabled is None:
    docs_enabled = not settings.is_production


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not settings.is_production:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    cache = CacheClient(create_redis_client())
    if settings.redis_enabled:
        await cache.ping()
    log_json(logger, logging.INFO, "startup", cache_available=cache.is_available())
    app.state.cache = cache
    try:
        yield
    finally:
        await cache.close()


app = FastAPI(
    title="EduConnect API",
    description="School management API: invitations, registration and authentication",
    version="1.0.0",
    docs_url="/api/docs" if docs_enabled else None,
    redoc_url="/api/redoc" if docs_enabled else None,
    openapi_url="/api/openapi.json" if docs_enabled else None,
    lifespan=lifespan,
)

# Middleware configuration (order matters - applied in reverse order)
# 1. Request logging (outermost - logs all requests)
app.add_middleware(RequestLoggingMiddleware)

# 2. Security headers
app.add_middleware(SecurityHeadersMiddleware)

# 3. CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    body = ErrorResponse(error=exc.error, message=exc.message, details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_json(
        logger,
        logging.ERROR,
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        exception=exc.__class__.__name__,
        error=str(exc),
    )
    details = None
    if not settings.is_production:
        details = {"exception": exc.__class__.__name__, "request_id": get_request_id()}
    body = ErrorResponse(
        error="internal_error",
        message="An unexpected error occurred",
        details=details,
    )
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


@app.get("/api/health")
async def health_check(cache: CacheClient = Depends(get_cache)):
    """Health check endpoint."""
    if not settings.redis_enabled:
        cache_state = "disabled"
    else:
        cache_state = "up" if await cache.ping() else "down"
    return {"status": "ok", "cache": cache_state}


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(invitations.router, prefix="/api/invitations", tags=["invitations"])
app.include_router(system_admin.router, prefix="/api/system-admin", tags=["system-admin"])
app.include_router(metrics.router, prefix="/api", tags=["metrics"])


@app.get("/api/me", response_model=MeResponse, response_model_exclude_none=True, tags=["auth"])
async def get_current_user_info(identity: Identity = Depends(get_current_identity)):
    """Who am I: system admin, school admin, or teacher/parent."""
    return MeResponse(
        kind=identity.kind.value,
        email=identity.email,
        role=identity.role,
        user=UserResponse.from_user(identity.user) if identity.user else None,
        school=SchoolResponse.model_validate(identity.school) if identity.school else None,
        cross_school_access=identity.user is None,
    )
