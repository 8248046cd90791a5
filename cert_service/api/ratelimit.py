"""Rate limiting dependency for FastAPI routes.

A dependency rather than middleware, so only routes that declare it pay
for it and each route can pick its own bucket size:

    POST /v1/certificates/generate   GENERATION_LIMIT (10 burst, 1 per 5s)
    GET  /v1/certificates/.../verify default (60 burst, 1 per second)
    GET  /health                     unlimited

Buckets are keyed by the token subject when a bearer token is present,
otherwise by client IP.
"""

from __future__ import annotations

import logging

import jwt as pyjwt
from fastapi import HTTPException, Request, status

from cert_service.core.metrics import RATE_LIMIT_HITS
from cert_service.db.redis import redis_pool
from cert_service.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
    RedisRateLimiter,
)

logger = logging.getLogger(__name__)

if redis_pool is not None:
    rate_limiter: RateLimiter = RedisRateLimiter(redis_pool)
else:
    rate_limiter = InMemoryRateLimiter()


_DEFAULT_CONFIG = RateLimitConfig()


def require_rate_limit(config: RateLimitConfig = _DEFAULT_CONFIG):
    """Dependency factory: enforce a token bucket on a route.

    @router.post("/generate", dependencies=[Depends(require_rate_limit(GENERATION_LIMIT))])
    """

    async def _check(request: Request) -> None:
        key = _build_key(request)
        result = await rate_limiter.check(key, config)

        request.state.rate_limit_headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
        }

        if not result.allowed:
            RATE_LIMIT_HITS.labels(
                key_type="user" if key.startswith("user:") else "ip"
            ).inc()
            logger.warning("Rate limit exceeded key=%s", key)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
                headers={
                    "Retry-After": str(int(result.retry_after) + 1),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return _check


def _build_key(request: Request) -> str:
    """User key from the bearer token's 'sub', else the client IP.

    The token is decoded without signature verification: it only picks a
    bucket.  A forged 'sub' just gets its own bucket; require_user does
    the real check.
    """
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            claims = pyjwt.decode(auth_header[7:], options={"verify_signature": False})
        except pyjwt.InvalidTokenError:
            claims = {}
        sub = claims.get("sub")
        if sub:
            return f"user:{sub}"

    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"
