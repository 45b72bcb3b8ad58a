"""Async engine, session factory and the request-scoped unit of work."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from educonnect.core.config import get_settings
from educonnect.core.structured_logging import log_json

settings = get_settings()
logger = logging.getLogger(__name__)

MAX_LOGGED_STATEMENT = 2000


def _async_url(url: str) -> str:
    """Pick the async driver: asyncpg for Postgres, aiosqlite for SQLite."""
    for sync_prefix, async_prefix in (
        ("postgresql://", "postgresql+asyncpg://"),
        ("sqlite://", "sqlite+aiosqlite://"),
    ):
        if url.startswith(sync_prefix):
            return async_prefix + url[len(sync_prefix):]
    return url


def install_slow_query_logging(target: AsyncEngine, threshold_ms: float) -> None:
    """Log statements slower than ``threshold_ms`` as ``slow_query`` warnings."""

    @event.listens_for(target.sync_engine, "before_cursor_execute")
    def _start_timer(conn, cursor, statement, parameters, context, executemany) -> None:
        context._query_start_time = time.perf_counter()

    @event.listens_for(target.sync_engine, "after_cursor_execute")
    def _report(conn, cursor, statement, parameters, context, executemany) -> None:
        start = getattr(context, "_query_start_time", None)
        if start is None:
            return
        duration_ms = (time.perf_counter() - start) * 1000
        if duration_ms < threshold_ms:
            return
        stmt = str(statement)
        if len(stmt) > MAX_LOGGED_STATEMENT:
            stmt = stmt[: MAX_LOGGED_STATEMENT - 3] + "..."
        # Parameters are left out: they can hold password hashes and token digests
        log_json(
            logger,
            logging.WARNING,
            "slow_query",
            duration_ms=round(duration_ms, 2),
            statement=stmt,
        )


# NullPool for test databases avoids connections leaking across event loops
engine = create_async_engine(
    _async_url(settings.database_url),
    echo=False,
    poolclass=NullPool if "test" in settings.database_url else None,
)
if settings.slow_query_ms > 0:
    install_slow_query_logging(engine, settings.slow_query_ms)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session.

    The session is the unit of work for one request: it commits when the
    handler returns and rolls back every write when anything raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
