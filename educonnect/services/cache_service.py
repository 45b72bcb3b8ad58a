"""Cache-aside layer over Redis.

Every call degrades to a miss (``None``/``False``/``0``) when Redis is
disabled, unreachable, or errors mid-call; the database stays the source of
truth and callers never see a cache exception.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from educonnect.core.config import get_settings
from educonnect.core.metrics import observe_cache_lookup
from educonnect.core.structured_logging import log_json

logger = logging.getLogger(__name__)

KEY_PREFIX = "educonnect"

NAMESPACE_INVITATION = "invitation"
NAMESPACE_SESSION = "auth"
NAMESPACE_DASHBOARD = "dashboard"


def _default_ttls() -> dict[str, int]:
    settings = get_settings()
    return {
        NAMESPACE_INVITATION: settings.cache_ttl_invitation,
        NAMESPACE_SESSION: settings.cache_ttl_session,
        NAMESPACE_DASHBOARD: settings.cache_ttl_dashboard,
    }


class CacheClient:
    """Namespaced JSON cache with graceful degradation."""

    def __init__(self, redis_client: Redis | None = None, default_ttl: int = 3600):
        self._redis = redis_client
        self._available = redis_client is not None
        self.default_ttl = default_ttl
        self._ttls = _default_ttls()

    def is_available(self) -> bool:
        return self._available

    async def ping(self) -> bool:
        """Probe Redis and update availability."""
        if self._redis is None:
            return False
        try:
            await self._redis.ping()
        except (RedisError, OSError) as exc:
            self._available = False
            log_json(logger, logging.WARNING, "cache_unavailable", error=str(exc))
            return False
        self._available = True
        return True

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    @staticmethod
    def generate_key(namespace: str, key: str) -> str:
        return f"{KEY_PREFIX}:{namespace}:{key}"

    def ttl_for(self, namespace: str) -> int:
        return self._ttls.get(namespace, self.default_ttl)

    async def get(self, namespace: str, key: str) -> Any | None:
        if not self._available:
            return None
        full_key = self.generate_key(namespace, key)
        try:
            raw = await self._redis.get(full_key)
        except (RedisError, OSError) as exc:
            observe_cache_lookup(namespace, "error")
            log_json(logger, logging.WARNING, "cache_get_failed", key=full_key, error=str(exc))
            return None
        if raw is None:
            observe_cache_lookup(namespace, "miss")
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            observe_cache_lookup(namespace, "error")
            log_json(logger, logging.WARNING, "cache_decode_failed", key=full_key)
            return None
        observe_cache_lookup(namespace, "hit")
        return value

    async def set(self, namespace: str, key: str, value: Any, ttl: int | None = None) -> bool:
        if not self._available:
            return False
        full_key = self.generate_key(namespace, key)
        try:
            payload = json.dumps(value, default=str)
            await self._redis.set(full_key, payload, ex=ttl or self.ttl_for(namespace))
        except (RedisError, OSError, TypeError) as exc:
            log_json(logger, logging.WARNING, "cache_set_failed", key=full_key, error=str(exc))
            return False
        return True

    async def delete(self, namespace: str, key: str) -> bool:
        if not self._available:
            return False
        full_key = self.generate_key(namespace, key)
        try:
            return bool(await self._redis.delete(full_key))
        except (RedisError, OSError) as exc:
            log_json(logger, logging.WARNING, "cache_delete_failed", key=full_key, error=str(exc))
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob over full keys. Returns the count."""
        if not self._available:
            return 0
        deleted = 0
        try:
            batch: list[str] = []
            async for key in self._redis.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self._redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._redis.delete(*batch)
        except (RedisError, OSError) as exc:
            log_json(
                logger,
                logging.WARNING,
                "cache_invalidation_failed",
                pattern=pattern,
                error=str(exc),
            )
            return deleted
        return deleted

    async def invalidate_school_cache(self, school_id: str) -> int:
        """Drop every cached entry that belongs to one school."""
        total = 0
        for namespace in (NAMESPACE_INVITATION, NAMESPACE_DASHBOARD):
            total += await self.delete_pattern(f"{KEY_PREFIX}:{namespace}:*:{school_id}*")
        return total

    # Sessions

    async def cache_session(self, user_id: str, session: dict[str, Any]) -> bool:
        return await self.set(NAMESPACE_SESSION, f"session:{user_id}", session)

    async def get_session(self, user_id: str) -> dict[str, Any] | None:
        return await self.get(NAMESPACE_SESSION, f"session:{user_id}")

    async def invalidate_session(self, user_id: str) -> bool:
        return await self.delete(NAMESPACE_SESSION, f"session:{user_id}")
