"""
FastAPI Application Entry Point.

This is the main application file for the Fleet Tracking Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fleet_backend.app.core.config import settings
from fleet_backend.app.api.v1.router import router as api_v1_router
from fleet_backend.app.core.observability import ObservabilityMiddleware
from fleet_backend.app.core.redis_client import close_redis, ping_redis
from fleet_backend.app.db.session import engine, Base, AsyncSessionLocal
from fleet_backend.app.domain.tracking.components import build_tracking_components
from fleet_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from fleet_backend.app.models.user import User
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.live_location import LiveLocation
from fleet_backend.app.models.route_history import RouteHistory, RouteHistoryPoint

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Builds the tracking pipeline (store, hub, ingest, routing).
    3. On shutdown closes subscriber tasks, the routing client and Redis.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.tracking = build_tracking_components(AsyncSessionLocal, settings)
    logger.info("%s started (api %s)", settings.app_name, settings.api_version)
    yield

    await app.state.tracking.close()
    await close_redis()
    await engine.dispose()
    logger.info("%s stopped", settings.app_name)


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Live vehicle tracking: position ingest, realtime fan-out and route history",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and live subscriber counts
    """
    tracking = getattr(app.state, "tracking", None)
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": await ping_redis(),
        "realtime": tracking.hub.get_stats() if tracking else None,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
