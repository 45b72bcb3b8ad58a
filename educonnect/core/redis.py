import redis.asyncio as redis
from redis.asyncio import Redis

from educonnect.core.config import get_settings


def _build_client() -> Redis:
    settings = get_settings()
    return redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )


def create_redis_client() -> Redis | None:
    """Client for the configured Redis, or None when caching is disabled."""
    if not get_settings().redis_enabled:
        return None
    return _build_client()
