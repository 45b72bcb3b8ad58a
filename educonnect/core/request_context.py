"""Correlation ID propagation for API requests and Celery tasks.

The ID lives in a ContextVar so ``log_json`` can attach it to every line
emitted while a request or task is running.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar, Token
from uuid import uuid4

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

CORRELATION_HEADERS = ("X-Request-ID", "X-Correlation-ID")
MAX_REQUEST_ID_LENGTH = 128


def get_request_id() -> str | None:
    return _request_id_var.get()


def set_request_id(request_id: str | None) -> Token[str | None]:
    return _request_id_var.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    _request_id_var.reset(token)


def resolve_request_id(headers: Mapping[str, str]) -> str:
    """Pick a client-supplied correlation ID or mint a new one.

    Client values are accepted only when short and free of line breaks, so a
    caller cannot inject extra log lines through the header.
    """
    for header in CORRELATION_HEADERS:
        candidate = (headers.get(header) or "").strip()
        if (
            candidate
            and len(candidate) <= MAX_REQUEST_ID_LENGTH
            and "\n" not in candidate
            and "\r" not in candidate
        ):
            return candidate
    return str(uuid4())


@contextmanager
def request_id_context(request_id: str | None) -> Iterator[None]:
    """Bind the correlation ID for the duration of the block."""
    token = set_request_id(request_id)
    try:
        yield
    finally:
        reset_request_id(token)
