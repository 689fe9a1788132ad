"""
Redis cache.

Namespaced keys: propmap:{namespace}:{key}
All values serialised as JSON.

Local dev:   redis://localhost:6379/0
Production:  set REDIS_URL in .env
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

# ── Single connection pool shared across the whole app ────────────────────────
_pool: Optional[ConnectionPool] = None


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        _pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=20,
            decode_responses=True,
        )
    return _pool


def get_redis() -> Redis:
    return Redis(connection_pool=_get_pool())


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


# ── Generic async cache class ─────────────────────────────────────────────────

class RedisCache:
    """
    Namespaced JSON values with a per-namespace TTL.

    Redis being down, slow or holding a non-JSON value is never fatal: the
    failure is logged and `get` reports a miss, `set` becomes a no-op. Callers
    always have the database behind this.

    `client_factory` returns the Redis client to talk to; it defaults to the
    shared pool.
    """

    def __init__(
        self,
        namespace: str,
        default_ttl_seconds: int = 300,
        client_factory: Callable[[], Redis] = get_redis,
    ):
        if default_ttl_seconds < 1:
            raise ValueError("default_ttl_seconds must be at least 1")
        self.ns = namespace
        self.ttl = default_ttl_seconds
        self._client_factory = client_factory

    def _key(self, key: str) -> str:
        return f"propmap:{self.ns}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client_factory().get(self._key(key))
        except (RedisError, OSError) as exc:
            logger.warning("[%s] get %s failed: %s", self.ns, key, exc)
            return None

        if raw is None:
            logger.debug("[%s] MISS %s", self.ns, key)
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("[%s] ignoring non-JSON value at %s", self.ns, key)
            return None
        logger.debug("[%s] HIT  %s", self.ns, key)
        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl
        try:
            payload = json.dumps(value)
            await self._client_factory().setex(self._key(key), ttl, payload)
        except (RedisError, OSError, TypeError, ValueError) as exc:
            logger.warning("[%s] set %s failed: %s", self.ns, key, exc)
            return
        logger.debug("[%s] SET  %s (ttl=%ds)", self.ns, key, ttl)


# ── Shared instances ──────────────────────────────────────────────────────────

distance_record_cache = RedisCache(
    "distance_records",
    default_ttl_seconds=settings.DISTANCE_REDIS_CACHE_TTL_SECONDS,
)
