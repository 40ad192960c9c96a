"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Booking``: enforces valid lifecycle transitions
  (pending -> confirmed -> enroute -> completed, any non-terminal -> cancelled).
- ``Trip.has_capacity`` encapsulates the seat invariant
  ``0 <= available_seats <= total_seats``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    BOOKING_TRANSITIONS,
    TERMINAL_BOOKING_STATUSES,
    TERMINAL_TRIP_STATUSES,
    BookingStatus,
    CancellationAttribution,
    TripStatus,
    UserRole,
)
from .errors import AlreadyTerminalNoOp, InvalidTransitionError


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Trip:
    id: Optional[int] = None
    driver_id: int = 0
    total_seats: int = 4
    available_seats: int = 4
    status: TripStatus = TripStatus.SCHEDULED
    version: int = 0
    departure_city: Optional[str] = None
    arrival_city: Optional[str] = None
    departure_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_closed(self) -> bool:
        return self.status in TERMINAL_TRIP_STATUSES

    @property
    def terminal_action(self) -> Optional[TripStatus]:
        """The driver's completed/cancelled override, if any."""
        return self.status if self.is_closed else None

    def has_capacity(self, seats: int) -> bool:
        return self.available_seats >= seats


@dataclass
class Booking:
    id: Optional[int] = None
    trip_id: int = 0
    passenger_id: int = 0
    driver_id: int = 0
    seats: int = 1
    status: BookingStatus = BookingStatus.PENDING
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES

    def check_transition(self, new_status: BookingStatus) -> None:
        """Raise unless *new_status* is reachable from the current status.

        Repeating a terminal transition raises ``AlreadyTerminalNoOp``.
        """
        if self.status == new_status and self.is_terminal:
            raise AlreadyTerminalNoOp(self.status.value)
        allowed = BOOKING_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransitionError(self.status.value, new_status.value)

    def transition_to(self, new_status: BookingStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        self.check_transition(new_status)
        self.status = new_status


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CancellationEvent:
    user_id: int
    role: UserRole
    attribution: CancellationAttribution
    occurred_at: datetime
    booking_id: Optional[int] = None
    trip_id: Optional[int] = None
    reason: Optional[str] = None
    id: Optional[int] = None


@dataclass
class SuspensionState:
    user_id: int
    is_suspended: bool = False
    reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    reactivated_at: Optional[datetime] = None
    cancellations_reset_at: Optional[datetime] = None


@dataclass(frozen=True)
class DomainEvent:
    """Outbound notification handed to the event publisher after commit."""

    name: str
    occurred_at: datetime
    payload: dict = field(default_factory=dict)
