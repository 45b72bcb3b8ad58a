"""Celery application and beat schedule for periodic invitation maintenance."""

from __future__ import annotations

import logging
import os
from contextvars import Token

from celery import Celery
from celery.schedules import crontab
from celery.signals import task_postrun, task_prerun

from educonnect.core.request_context import reset_request_id, set_request_id

logger = logging.getLogger(__name__)

EXPIRE_INVITATIONS_TASK = "educonnect.tasks.invitation_task.expire_invitations"
MAINTENANCE_QUEUE = "maintenance"
# A sweep that waited longer than this is dropped; the next hourly run covers it
SWEEP_EXPIRES_SECONDS = 55 * 60

_task_tokens: dict[str, Token[str | None]] = {}


def _broker_url() -> str:
    return os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")


celery_app = Celery(
    "educonnect",
    broker=_broker_url(),
    backend=os.getenv("CELERY_RESULT_BACKEND", _broker_url()),
    include=["educonnect.tasks.invitation_task"],
)

celery_app.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_routes={EXPIRE_INVITATIONS_TASK: {"queue": MAINTENANCE_QUEUE}},
    worker_prefetch_multiplier=1,
    beat_schedule={
        "expire-stale-invitations": {
            "task": EXPIRE_INVITATIONS_TASK,
            "schedule": crontab(minute=0),
            "options": {"expires": SWEEP_EXPIRES_SECONDS},
        }
    },
)


@task_prerun.connect
def _attach_correlation_id(task_id: str | None = None, **_: object) -> None:
    """Log lines emitted while a task runs carry its task id as request_id."""
    if task_id:
        _task_tokens[task_id] = set_request_id(task_id)


@task_postrun.connect
def _detach_correlation_id(task_id: str | None = None, **_: object) -> None:
    token = _task_tokens.pop(task_id, None) if task_id else None
    if token is None:
        return
    try:
        reset_request_id(token)
    except ValueError:
        # prefork pools may run postrun in another context
        logger.warning("Task correlation id reset from a foreign context", exc_info=True)
