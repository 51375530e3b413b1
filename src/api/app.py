"""
FastAPI application factory.

* Wires the lifecycle services on startup (or takes prebuilt ones).
* Starts / stops the background lock sweeper via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, bookings
from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.redis_client import close_redis, get_redis
from src.services.wiring import Components, build_components, needs_redis
from src.workers import lock_sweeper

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build components if none were injected; run the lock sweeper."""
    redis = None
    if app.state.components is None:
        redis = await get_redis() if needs_redis(settings) else None
        app.state.components = build_components(async_session_factory, redis=redis)
    await lock_sweeper.start_sweep_loop(
        app.state.components.locks, settings.lock_sweep_interval_seconds
    )
    yield
    await lock_sweeper.stop_sweep_loop()
    if redis is not None:
        await close_redis()


def create_app(components: Optional[Components] = None) -> FastAPI:
    app = FastAPI(
        title="Booking Lifecycle API",
        description=(
            "Drives a delivery booking from pending to completed for "
            "customers, drivers and admins acting concurrently.  Enforces "
            "the status graph, geofenced pickup / drop-off confirmation, "
            "idempotent retries and exclusive driver acceptance."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.components = components

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
