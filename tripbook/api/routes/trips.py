"""
Trip endpoints
==============

GET  /api/v1/trips/{trip_id}            -- seats and derived status
GET  /api/v1/trips/{trip_id}/bookings   -- trip with all of its bookings
POST /api/v1/trips/{trip_id}/complete   -- close the trip, cascade to bookings
POST /api/v1/trips/{trip_id}/cancel     -- driver cancels the whole trip
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from tripbook.api.dependencies import get_booking_service
from tripbook.api.middleware import DEFAULT_LIMIT, limiter
from tripbook.api.schemas import (
    BookingResponse,
    ErrorResponse,
    TripCancelRequest,
    TripDetailResponse,
    TripResponse,
)
from tripbook.services.booking_lifecycle import BookingService

router = APIRouter(prefix="/trips", tags=["trips"])


@router.get(
    "/{trip_id}",
    response_model=TripResponse,
    summary="Get trip seats and status",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def get_trip(
    request: Request,
    trip_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_trip(trip_id)


@router.get(
    "/{trip_id}/bookings",
    response_model=TripDetailResponse,
    summary="Get a trip together with its bookings",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def get_trip_bookings(
    request: Request,
    trip_id: int,
    service: BookingService = Depends(get_booking_service),
):
    trip, bookings = await service.get_trip_with_bookings(trip_id)
    return TripDetailResponse(
        **TripResponse.model_validate(trip).model_dump(),
        bookings=[BookingResponse.model_validate(b) for b in bookings],
    )


@router.post(
    "/{trip_id}/complete",
    response_model=TripResponse,
    summary="Complete the entire trip",
    description=(
        "Completes every confirmed / en-route booking, cancels bookings the "
        "driver never accepted and marks the trip completed.  Idempotent."
    ),
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def complete_trip(
    request: Request,
    trip_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.complete_trip(trip_id)


@router.post(
    "/{trip_id}/cancel",
    response_model=TripResponse,
    summary="Driver cancels the trip",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def cancel_trip(
    request: Request,
    trip_id: int,
    body: Optional[TripCancelRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    return await service.cancel_trip(trip_id, reason=body.reason if body else None)
