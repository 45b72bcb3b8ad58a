"""Structured JSON logging.

Every service logs one JSON object per line through ``log_json`` so the output
can be shipped to any collector. Fields whose names mark them as bearer
secrets are masked before serialization.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from educonnect.core.request_context import get_request_id

REDACTED = "***"
SECRET_FIELDS = frozenset(
    {
        "password",
        "temporary_password",
        "temp_password",
        "token",
        "access_token",
        "refresh_token",
        "reset_token",
    }
)


def _redact(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: REDACTED if key in SECRET_FIELDS else value for key, value in fields.items()}


def log_json(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """Emit a single JSON log line with the current correlation ID, if any."""

    payload: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "event": event,
    }
    request_id = get_request_id()
    if request_id:
        payload["request_id"] = request_id

    payload.update(_redact(fields))
    logger.log(level, json.dumps(payload, default=str))
