"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

HTTP_REQUESTS_TOTAL = Counter(
    "educonnect_http_requests_total",
    "Total number of HTTP requests.",
    ["method", "route", "status"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "educonnect_http_request_duration_seconds",
    "HTTP request duration in seconds.",
    ["method", "route", "status"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

INVITATION_EVENTS_TOTAL = Counter(
    "educonnect_invitation_events_total",
    "Invitation lifecycle events.",
    ["action", "role"],
)

CACHE_LOOKUPS_TOTAL = Counter(
    "educonnect_cache_lookups_total",
    "Cache reads by namespace and outcome (hit, miss, error).",
    ["namespace", "outcome"],
)


def observe_http_request(
    *,
    method: str,
    route: str,
    status_code: int,
    duration_ms: float,
) -> None:
    status = str(status_code)
    HTTP_REQUESTS_TOTAL.labels(method=method, route=route, status=status).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(
        method=method, route=route, status=status
    ).observe(duration_ms / 1000.0)


def observe_invitation_event(action: str, role: str = "all", count: int = 1) -> None:
    """Count an invitation transition (created, resent, cancelled, accepted, expired)."""
    if count > 0:
        INVITATION_EVENTS_TOTAL.labels(action=action, role=role).inc(count)


def observe_cache_lookup(namespace: str, outcome: str) -> None:
    CACHE_LOOKUPS_TOTAL.labels(namespace=namespace, outcome=outcome).inc()
