"""Prometheus scrape endpoint."""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from educonnect.core.config import get_settings
from educonnect.core.exceptions import AuthorizationError, NotFoundError

router = APIRouter()
scrape_bearer = HTTPBearer(auto_error=False)


async def require_scrape_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(scrape_bearer),
    x_metrics_token: str | None = Header(default=None, alias="X-Metrics-Token"),
) -> None:
    """Open in development; in production the scraper must present ``METRICS_TOKEN``.

    Without a configured token the endpoint does not exist in production.
    """
    settings = get_settings()
    if not settings.is_production:
        return
    if not settings.metrics_token:
        raise NotFoundError("Not found")
    presented = (credentials.credentials if credentials else None) or x_metrics_token
    if not presented or not hmac.compare_digest(presented, settings.metrics_token):
        raise AuthorizationError("Forbidden")


@router.get(
    "/metrics",
    include_in_schema=False,
    dependencies=[Depends(require_scrape_token)],
)
async def metrics_endpoint() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
