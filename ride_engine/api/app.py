"""
FastAPI application factory.

* Registers routes for zones, fares, dispatch, drivers, rides and admin.
* Starts / stops the config-sync and auto-dispatch workers via lifespan.
* Translates engine errors into HTTP responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ride_engine.api.middleware import limiter
from ride_engine.api.routes import admin, dispatch, drivers, fares, rides, zones
from ride_engine.domain.errors import (
    AlreadyAssigned,
    EngineError,
    InvalidFareRule,
    InvalidGeometry,
    InvalidInput,
    InvalidStateTransition,
    NoDriversAvailable,
    NoFareConfigured,
    OutOfServiceArea,
    UnknownDriver,
    UnknownZone,
)
from ride_engine.engine import Engine, build_engine
from ride_engine.infrastructure.redis_client import close_redis
from ride_engine.workers import auto_dispatch as _auto_dispatch
from ride_engine.workers import config_sync as _config_sync

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[EngineError], int] = {
    InvalidGeometry: 422,
    InvalidInput: 422,
    InvalidFareRule: 422,
    OutOfServiceArea: 422,
    NoFareConfigured: 404,
    UnknownDriver: 404,
    UnknownZone: 404,
    NoDriversAvailable: 409,
    AlreadyAssigned: 409,
    InvalidStateTransition: 409,
}


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400
    )
    if status >= 409:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, status, exc)
    return JSONResponse(
        status_code=status,
        content={
            "detail": str(exc),
            "error": type(exc).__name__,
            "retryable": exc.retryable,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the workers on startup; stop them on shutdown."""
    engine = app.state.engine
    await _config_sync.start_config_sync_loop(engine)
    await _auto_dispatch.start_auto_dispatch_loop(engine)
    yield
    await _auto_dispatch.stop_auto_dispatch_loop()
    await _config_sync.stop_config_sync_loop()
    await close_redis()


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    app = FastAPI(
        title="Ride Engine API",
        description=(
            "Service-zone lookup, fare quotes and driver dispatch for a "
            "ride-hailing platform.  Zones and fare rules are edited by "
            "admins and synced into every process; drivers stream status "
            "and location updates."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine or build_engine()

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(EngineError, engine_error_handler)

    # Routers
    for module in (zones, fares, dispatch, drivers, rides, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app
