"""
FastAPI application factory.

* Registers routes for bookings, trips, users and admin.
* Starts / stops the background expiration worker via lifespan events.
* Maps engine errors onto HTTP status codes with a ``{"detail", "code"}`` body.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from tripbook.api.dependencies import build_booking_service, build_sweeper
from tripbook.api.middleware import limiter
from tripbook.api.routes import admin, bookings, trips, users
from tripbook.domain.errors import (
    InsufficientCapacity,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    SuspendedError,
    TransientFailure,
    TripBookingError,
    ValidationError,
)
from tripbook.infrastructure import redis_client
from tripbook.infrastructure.repositories import SqlAlchemyUnitOfWork
from tripbook.workers import sweeper as _sweeper

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Checked in order; subclasses must come before their bases.
_STATUS_BY_ERROR: list[tuple[type[TripBookingError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (InsufficientCapacity, 409),
    (InvalidTransitionError, 409),
    (SuspendedError, 403),
    (TransientFailure, 503),
    (PersistenceError, 503),
]


def status_for(exc: TripBookingError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status
    return 500


async def booking_error_handler(request: Request, exc: TripBookingError) -> JSONResponse:
    status = status_for(exc)
    body = {"detail": str(exc), "code": exc.code}
    if isinstance(exc, InsufficientCapacity):
        body["available"] = exc.available
    elif isinstance(exc, SuspendedError):
        body["reason"] = exc.reason
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=body)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the event publisher and start the sweep worker; stop on shutdown."""
    publisher = await redis_client.create_event_publisher()
    app.state.publisher = publisher
    service = build_booking_service(SqlAlchemyUnitOfWork, publisher)
    await _sweeper.start_sweep_loop(build_sweeper(service, SqlAlchemyUnitOfWork))
    yield
    await _sweeper.stop_sweep_loop()
    await publisher.drain()
    await redis_client.close_pool()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Trip Booking API",
        description=(
            "Seat reservations on driver-offered trips.  Keeps seat counts "
            "consistent under concurrent bookings, expires stale requests and "
            "suspends users who cancel too often."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(TripBookingError, booking_error_handler)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(users.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
