"""Pydantic request / response schemas for the REST API.

Clients of the older front-end send the same field under different names
(``seats_booked`` / ``seatsBooked``, ``tripId`` ...).  Those spellings are
accepted here, once, and everything past this module uses the canonical
snake_case names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from tripbook.domain.enums import (
    BookingStatus,
    CancellationAttribution,
    TripStatus,
    UserRole,
    WarningLevel,
)


# ── Requests ──────────────────────────────────────────────────────────


class BookingCreateRequest(BaseModel):
    trip_id: int = Field(..., gt=0, validation_alias=AliasChoices("trip_id", "tripId"))
    passenger_id: int = Field(
        ..., gt=0, validation_alias=AliasChoices("passenger_id", "passengerId")
    )
    seats: int = Field(
        1,
        ge=1,
        validation_alias=AliasChoices("seats", "seats_booked", "seatsBooked"),
    )
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        validation_alias=AliasChoices("idempotency_key", "idempotencyKey"),
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)
    cancelled_by: UserRole = Field(
        UserRole.PASSENGER,
        validation_alias=AliasChoices("cancelled_by", "cancelledBy"),
    )


class TripCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class ReactivateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)
    reset_cancellations: bool = Field(
        False,
        validation_alias=AliasChoices("reset_cancellations", "resetCancellations"),
    )


# ── Responses ─────────────────────────────────────────────────────────


class BookingResponse(BaseModel):
    id: int
    trip_id: int
    passenger_id: int
    driver_id: int
    seats: int
    status: BookingStatus
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TripResponse(BaseModel):
    id: int
    driver_id: int
    total_seats: int
    available_seats: int
    status: TripStatus
    departure_city: Optional[str] = None
    arrival_city: Optional[str] = None
    departure_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TripDetailResponse(TripResponse):
    bookings: list[BookingResponse] = []


class CancellationCountResponse(BaseModel):
    user_id: int
    role: UserRole
    count: int
    window_days: int
    warning: WarningLevel


class SuspensionResponse(BaseModel):
    user_id: int
    is_suspended: bool
    reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    reactivated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CancellationEventResponse(BaseModel):
    id: Optional[int] = None
    user_id: int
    role: UserRole
    attribution: CancellationAttribution
    booking_id: Optional[int] = None
    trip_id: Optional[int] = None
    reason: Optional[str] = None
    occurred_at: datetime

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    checked_before: datetime
    cancelled_count: int
    cancelled_booking_ids: list[int] = []
    skipped_count: int = 0
    purged_events: int = 0
    errors: list[str] = []

    model_config = {"from_attributes": True}


class CancellationStatsResponse(BaseModel):
    days: int
    total: int
    by_role: dict[str, int]
    by_attribution: dict[str, int]
    trip_cancellations: int
    booking_cancellations: int
    last_window: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
