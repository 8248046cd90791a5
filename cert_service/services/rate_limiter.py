"""Token-bucket rate limiting.

Each client owns a bucket of ``capacity`` tokens that refills at
``refill_rate`` tokens per second; every request spends one.  Bursts up
to the capacity are allowed, the long-run average is bounded by the
refill rate, and the state per client is just two numbers.

Generation requests are the expensive path in this service (render +
upload), so they get their own, tighter bucket.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """allowed: may proceed.  retry_after: seconds until the next token."""

    allowed: bool
    remaining: int
    limit: int
    retry_after: float


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """capacity: burst size.  refill_rate: tokens per second."""

    capacity: int = 60
    refill_rate: float = 1.0


GENERATION_LIMIT = RateLimitConfig(capacity=10, refill_rate=0.2)


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...
    async def reset(self, key: str) -> None: ...


class InMemoryRateLimiter:
    """Per-process buckets.  Behind a load balancer each replica counts
    separately; use the Redis limiter there."""

    def __init__(self, clock=time.monotonic) -> None:
        # key -> (tokens, last_refill)
        self._buckets: dict[str, tuple[float, float]] = {}
        self._clock = clock

    def clear(self) -> None:
        self._buckets.clear()

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        tokens, last_refill = self._buckets.get(key, (float(config.capacity), now))
        tokens = min(config.capacity, tokens + (now - last_refill) * config.refill_rate)

        if tokens >= 1:
            tokens -= 1
            self._buckets[key] = (tokens, now)
            return RateLimitResult(
                allowed=True, remaining=int(tokens), limit=config.capacity, retry_after=0
            )

        self._buckets[key] = (tokens, now)
        return RateLimitResult(
            allowed=False,
            remaining=0,
            limit=config.capacity,
            retry_after=(1 - tokens) / config.refill_rate,
        )

    async def reset(self, key: str) -> None:
        self._buckets.pop(key, None)


class RedisRateLimiter:
    """Redis-backed token bucket shared by every replica.

    The read-refill-spend-write cycle runs as one Lua script, which Redis
    executes atomically, so two concurrent requests can never both spend
    the same token.
    """

    # KEYS[1] bucket key; ARGV capacity, refill_rate, now.
    # Returns {allowed, remaining, retry_after_ms}.
    _LUA_SCRIPT = """
    local capacity = tonumber(ARGV[1])
    local refill_rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local ttl = math.ceil(capacity / refill_rate) + 60

    local bucket = redis.call('HMGET', KEYS[1], 'tokens', 'last_refill')
    local tokens = tonumber(bucket[1]) or capacity
    local last_refill = tonumber(bucket[2]) or now

    tokens = math.min(capacity, tokens + (now - last_refill) * refill_rate)

    if tokens >= 1 then
        tokens = tokens - 1
        redis.call('HSET', KEYS[1], 'tokens', tokens, 'last_refill', now)
        redis.call('EXPIRE', KEYS[1], ttl)
        return {1, math.floor(tokens), 0}
    end

    redis.call('HSET', KEYS[1], 'tokens', tokens, 'last_refill', now)
    redis.call('EXPIRE', KEYS[1], ttl)
    return {0, 0, math.ceil((1 - tokens) / refill_rate * 1000)}
    """

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._script = redis_client.register_script(self._LUA_SCRIPT)

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        allowed, remaining, retry_after_ms = await self._script(
            keys=[f"ratelimit:{key}"],
            args=[config.capacity, config.refill_rate, time.time()],
        )
        return RateLimitResult(
            allowed=bool(allowed),
            remaining=int(remaining),
            limit=config.capacity,
            retry_after=retry_after_ms / 1000,
        )

    async def reset(self, key: str) -> None:
        await self._redis.delete(f"ratelimit:{key}")
