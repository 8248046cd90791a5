from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cert_service.api.admin import router as admin_router
from cert_service.api.certificates import router as certificates_router
from cert_service.api.health import router as health_router
from cert_service.api.metrics_endpoint import router as metrics_router
from cert_service.core.config import SETTINGS
from cert_service.core.logging import setup_logging
from cert_service.db.engine import lifespan_db
from cert_service.db.redis import lifespan_redis
from cert_service.middleware.metrics import MetricsMiddleware
from cert_service.middleware.request_context import RequestContextMiddleware
from cert_service.services.coordinator import coordinator, run_periodic_cleanup

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan_cleanup():
    """Run coordinator.cleanup() on a timer for the life of the app."""
    if SETTINGS.cleanup_interval_seconds <= 0:
        logger.info("Periodic generation cleanup disabled")
        yield
        return

    task = asyncio.create_task(
        run_periodic_cleanup(coordinator, SETTINGS.cleanup_interval_seconds),
        name="generation-cleanup",
    )
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one step fails.
    async with lifespan_db():
        async with lifespan_redis():
            async with lifespan_cleanup():
                try:
                    yield
                finally:
                    # Let in-flight certificate emails go out before exit.
                    await coordinator.drain_notifications()


app = FastAPI(
    title="certificate-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SETTINGS.public_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(certificates_router)
app.include_router(admin_router)

logger.info(
    "certificate-service started  env=%s log_level=%s port=%d ttl=%ds timeout=%ds",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.generation_ttl_seconds,
    SETTINGS.generation_timeout_seconds,
)
