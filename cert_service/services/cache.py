"""Read-through cache service.

    Client -> Cache -> miss -> DB -> populate cache -> return
    Client -> Cache -> hit  -> return (skip DB entirely)

Used for public certificate verification, which third parties may hit
far more often than anything else in the service.  Credentials are
immutable apart from their artifact URL, so a TTL is the only
invalidation we need.  Anything time-dependent (expiry) must be
evaluated by the caller on every read, never cached.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from cert_service.db.redis import redis_pool


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL (time to live)."""
        ...

    async def delete(self, key: str) -> None: ...


class InMemoryCacheService:
    """In-memory cache for dev and tests.  No TTL enforcement; the autouse
    fixture in conftest.py clears the store between tests."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def clear(self) -> None:
        self._store.clear()

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)


class RedisCacheService:
    """Redis-backed cache, shared across all API instances."""

    # Key prefix prevents collisions with the rate limiter.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
