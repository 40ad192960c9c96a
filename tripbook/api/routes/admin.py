"""
Admin / operations endpoints
============================

POST /api/v1/admin/sweep                          -- expire stale pending bookings now
POST /api/v1/admin/trips/{trip_id}/recalculate    -- rebuild seat count from bookings
POST /api/v1/admin/users/{user_id}/reactivate     -- lift a suspension
GET  /api/v1/admin/cancellation-stats             -- aggregate cancellation numbers
GET  /api/v1/admin/health                         -- simple health check
"""

from fastapi import APIRouter, Depends, Query, Request

from tripbook.api.dependencies import get_booking_service, get_sweeper
from tripbook.api.middleware import DEFAULT_LIMIT, limiter
from tripbook.api.schemas import (
    CancellationStatsResponse,
    ErrorResponse,
    HealthResponse,
    ReactivateRequest,
    SuspensionResponse,
    SweepResponse,
    TripResponse,
)
from tripbook.services.booking_lifecycle import BookingService
from tripbook.services.expiration import ExpirationSweeper

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run the expiration sweep once",
    description=(
        "Cancels bookings that have been pending longer than the configured "
        "threshold and returns their seats to the trip.  Failures on single "
        "bookings are reported in ``errors`` and do not stop the sweep."
    ),
)
@limiter.limit("10/minute")
async def run_sweep(
    request: Request,
    sweeper: ExpirationSweeper = Depends(get_sweeper),
):
    return await sweeper.run_sweep()


@router.post(
    "/trips/{trip_id}/recalculate",
    response_model=TripResponse,
    summary="Recompute available seats from the trip's bookings",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def recalculate_trip(
    request: Request,
    trip_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.recalculate_trip(trip_id)


@router.post(
    "/users/{user_id}/reactivate",
    response_model=SuspensionResponse,
    summary="Reactivate a suspended user",
)
@limiter.limit(DEFAULT_LIMIT)
async def reactivate_user(
    request: Request,
    user_id: int,
    body: ReactivateRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.reactivate_user(
        user_id, body.reason, reset_cancellations=body.reset_cancellations
    )


@router.get(
    "/cancellation-stats",
    response_model=CancellationStatsResponse,
    summary="Cancellation statistics over the last N days",
)
@limiter.limit(DEFAULT_LIMIT)
async def cancellation_stats(
    request: Request,
    days: int = Query(30, ge=1, le=365),
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_cancellation_statistics(days)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
