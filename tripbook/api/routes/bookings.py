"""
Booking endpoints
=================

POST /api/v1/bookings                     -- reserve seats (201, booking is pending)
GET  /api/v1/bookings/{booking_id}        -- current booking state
POST /api/v1/bookings/{booking_id}/confirm   -- driver accepts
POST /api/v1/bookings/{booking_id}/start     -- trip under way
POST /api/v1/bookings/{booking_id}/cancel    -- cancel, idempotent
POST /api/v1/bookings/{booking_id}/complete  -- complete this booking only, idempotent
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from tripbook.api.dependencies import get_booking_service
from tripbook.api.middleware import DEFAULT_LIMIT, limiter
from tripbook.api.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingResponse,
    ErrorResponse,
)
from tripbook.services.booking_lifecycle import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Reserve seats on a trip",
    responses={
        403: {"model": ErrorResponse, "description": "Passenger is suspended."},
        404: {"model": ErrorResponse, "description": "Trip not found."},
        409: {"model": ErrorResponse, "description": "Not enough seats or trip closed."},
    },
)
@limiter.limit(DEFAULT_LIMIT)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    service: BookingService = Depends(get_booking_service),
):
    return await service.create_booking(
        body.trip_id,
        body.passenger_id,
        body.seats,
        idempotency_key=body.idempotency_key,
    )


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get booking status",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def get_booking(
    request: Request,
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_booking(booking_id)


@router.post(
    "/{booking_id}/confirm",
    response_model=BookingResponse,
    summary="Driver accepts a pending booking",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def confirm_booking(
    request: Request,
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.confirm_booking(booking_id)


@router.post(
    "/{booking_id}/start",
    response_model=BookingResponse,
    summary="Mark a confirmed booking as en route",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def start_trip(
    request: Request,
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.start_trip(booking_id)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel a booking",
    description=(
        "Releases the booking's seats back to the trip and logs the "
        "cancellation against the passenger (or the driver, when the driver "
        "rejects it).  Repeating the call returns the cancelled booking."
    ),
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def cancel_booking(
    request: Request,
    booking_id: int,
    body: Optional[BookingCancelRequest] = None,
    service: BookingService = Depends(get_booking_service),
):
    body = body or BookingCancelRequest()
    return await service.cancel_booking(
        booking_id, reason=body.reason, cancelled_by=body.cancelled_by
    )


@router.post(
    "/{booking_id}/complete",
    response_model=BookingResponse,
    summary="Complete this booking only",
    description="Other bookings and the trip itself are left as they are.",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def complete_booking(
    request: Request,
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.complete_booking(booking_id)
