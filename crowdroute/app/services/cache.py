"""
Read-path cache backed by Redis.

Nearby and search results are cached as JSON for a short TTL. Keys embed
a generation counter that location writes bump, so stale entries are
simply never read again and expire on their own.

Redis is optional: faults are logged, counted by the circuit breaker and
turned into cache misses.
"""

import hashlib
import json
import logging
from typing import Any, Optional

from redis.exceptions import RedisError

import crowdroute.app.core.redis_client as redis_client_module
from crowdroute.app.core.config import settings
from crowdroute.app.core.reliability import CircuitOpenError, cache_circuit_breaker

logger = logging.getLogger(__name__)

GENERATION_KEY = "crowdroute:geo:generation"
CACHE_FAULTS = (RedisError, OSError, CircuitOpenError)


class CacheService:

    @staticmethod
    async def _generation() -> str:
        client = await redis_client_module.get_redis()
        value = await cache_circuit_breaker.call(client.get, GENERATION_KEY)
        return str(value or 0)

    @staticmethod
    async def build_key(namespace: str, **params: Any) -> Optional[str]:
        """Namespaced key over the sorted params and current generation, None if Redis is down."""
        try:
            generation = await CacheService._generation()
        except CACHE_FAULTS as exc:
            logger.warning("Cache unavailable: %s", exc)
            return None
        digest = hashlib.sha1(json.dumps(params, sort_keys=True, default=str).encode()).hexdigest()
        return f"crowdroute:{namespace}:{generation}:{digest}"

    @staticmethod
    async def get(key: Optional[str]) -> Optional[Any]:
        if key is None:
            return None
        try:
            client = await redis_client_module.get_redis()
            raw = await cache_circuit_breaker.call(client.get, key)
        except CACHE_FAULTS as exc:
            logger.warning("Cache read failed: %s", exc)
            return None
        return json.loads(raw) if raw else None

    @staticmethod
    async def set(key: Optional[str], data: Any, ttl_seconds: int = None):
        if key is None:
            return
        try:
            client = await redis_client_module.get_redis()
            await cache_circuit_breaker.call(
                client.set, key, json.dumps(data, default=str), ex=ttl_seconds or settings.cache_ttl_seconds
            )
        except CACHE_FAULTS as exc:
            logger.warning("Cache write failed: %s", exc)

    @staticmethod
    async def invalidate_locations():
        """Bump the generation so every cached geo result is bypassed."""
        try:
            client = await redis_client_module.get_redis()
            await cache_circuit_breaker.call(client.incr, GENERATION_KEY)
        except CACHE_FAULTS as exc:
            logger.warning("Cache invalidation failed: %s", exc)
