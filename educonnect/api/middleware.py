"""HTTP middleware: security headers, plus per-request logging and metrics."""

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from educonnect.core.config import get_settings
from educonnect.core.metrics import observe_http_request
from educonnect.core.request_context import request_id_context, resolve_request_id
from educonnect.core.structured_logging import log_json

logger = logging.getLogger(__name__)
settings = get_settings()

_STATIC_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    # Responses carry tokens and temporary passwords
    "Cache-Control": "no-store",
}
HSTS_VALUE = "max-age=63072000; includeSubDomains"


def _route_template(request: Request) -> str:
    """Full route path with placeholders, so invitation ids do not explode label cardinality.

    Routes of an included router may report their path without the router
    prefix; the prefix is recovered from the request path.
    """
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if not template:
        return "unmatched"
    if "{" not in template:
        return request.url.path
    path_segments = request.url.path.rstrip("/").split("/")
    template_segments = template.rstrip("/").split("/")
    prefix_length = max(len(path_segments) - len(template_segments), 0)
    return "/".join(path_segments[: prefix_length + 1]).rstrip("/") + template


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in _STATIC_SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)

        if settings.is_production:
            scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
            if scheme == "https":
                response.headers.setdefault("Strict-Transport-Security", HSTS_VALUE)
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One structured log line and one metrics sample per request.

    The correlation id comes from ``X-Request-ID``/``X-Correlation-ID`` when
    the client sends a usable one and is echoed back in ``X-Request-ID``.
    Requests that authenticated are tagged with the caller's ``school_id``.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers)
        request.state.request_id = request_id
        started = time.perf_counter()
        fields = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }

        with request_id_context(request_id):
            try:
                response = await call_next(request)
            except Exception as exc:
                log_json(
                    logger,
                    logging.ERROR,
                    "request_error",
                    status_code=500,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    exception=exc.__class__.__name__,
                    **fields,
                )
                raise

            duration_ms = (time.perf_counter() - started) * 1000
            route = _route_template(request)
            response.headers.setdefault("X-Request-ID", request_id)
            observe_http_request(
                method=request.method,
                route=route,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            log_json(
                logger,
                _level_for(response.status_code),
                "request",
                route=route,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
                school_id=getattr(request.state, "school_id", None),
                **fields,
            )
            return response
