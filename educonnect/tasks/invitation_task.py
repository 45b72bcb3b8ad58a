"""Celery task that sweeps expired invitations."""

import asyncio
import logging
import time

from educonnect.core.database import AsyncSessionLocal
from educonnect.core.structured_logging import log_json
from educonnect.services.invitation_service import InvitationService
from educonnect.tasks.celery_app import EXPIRE_INVITATIONS_TASK, celery_app

logger = logging.getLogger(__name__)


async def run_expiry_sweep(session_factory=AsyncSessionLocal) -> int:
    """Flip pending invitations past their expiry to expired; returns the count."""
    async with session_factory() as session:
        try:
            expired = await InvitationService(session).expire_old_invitations()
            await session.commit()
            return expired
        except Exception:
            await session.rollback()
            raise


@celery_app.task(name=EXPIRE_INVITATIONS_TASK)
def expire_invitations() -> int:
    """Hourly via Celery Beat (see ``educonnect.tasks.celery_app``).

    Re-running, or running two sweeps at once, is harmless: each only
    updates rows that still match the pending-and-expired filter.
    """

    started = time.perf_counter()
    log_json(logger, logging.INFO, "invitation_expiry_start")

    try:
        expired = asyncio.run(run_expiry_sweep())
    except Exception as exc:
        duration_ms = (time.perf_counter() - started) * 1000
        log_json(
            logger,
            logging.ERROR,
            "invitation_expiry_error",
            duration_ms=round(duration_ms, 2),
            error=str(exc),
            exception=exc.__class__.__name__,
        )
        raise

    duration_ms = (time.perf_counter() - started) * 1000
    log_json(
        logger,
        logging.INFO,
        "invitation_expiry_done",
        expired=expired,
        duration_ms=round(duration_ms, 2),
    )
    return expired
