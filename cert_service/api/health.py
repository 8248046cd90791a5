"""Health and readiness endpoints.

  /health  liveness: the process answers.  Always 200; ``status`` says
           "degraded" when a dependency is down, because restarting the
           container would not fix Redis or Postgres.
  /ready   readiness: 503 when a configured dependency is unreachable,
           so the load balancer stops routing here until it recovers.

Both report the generation coordinator's cache size, which is the one
piece of in-process state this service holds.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from cert_service.db.engine import engine
from cert_service.db.redis import redis_pool
from cert_service.services.coordinator import coordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_dependencies() -> dict[str, str]:
    checks: dict[str, str] = {}

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            logger.warning("Redis health check failed", exc_info=True)
            checks["redis"] = "degraded"
    else:
        checks["redis"] = "not_configured"

    if engine is not None:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            logger.warning("Database health check failed", exc_info=True)
            checks["database"] = "degraded"
    else:
        checks["database"] = "not_configured"

    return checks


@router.get("/health")
async def health() -> dict:
    checks = await _check_dependencies()
    overall = "degraded" if "degraded" in checks.values() else "ok"
    gen = coordinator.status()
    return {
        "status": overall,
        "checks": checks,
        "generation": {
            "totalEntries": gen.total_entries,
            "activeGenerations": gen.active_generations,
        },
    }


@router.get("/ready")
async def ready() -> JSONResponse:
    checks = await _check_dependencies()
    ready_ = "degraded" not in checks.values()
    return JSONResponse(
        status_code=200 if ready_ else 503,
        content={"ready": ready_, "checks": checks},
    )
