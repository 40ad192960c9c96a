"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ENROUTE = "enroute"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TripStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    FULLY_BOOKED = "fully_booked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class UserRole(str, enum.Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"


class CancellationAttribution(str, enum.Enum):
    USER_INITIATED = "user-initiated"
    SYSTEM_EXPIRED = "system-expired"


class WarningLevel(str, enum.Enum):
    NONE = "none"
    INFO = "info"
    SEVERE = "severe"
    SUSPENDED = "suspended"


# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {
        BookingStatus.ENROUTE,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.ENROUTE: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)

# Bookings in these states consume trip capacity
SEAT_HOLDING_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
        BookingStatus.ENROUTE,
        BookingStatus.COMPLETED,
    }
)

TERMINAL_TRIP_STATUSES = frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED})


def allowed_sources(target: BookingStatus) -> set[BookingStatus]:
    """Every status from which *target* is reachable in one step."""
    return {src for src, nxt in BOOKING_TRANSITIONS.items() if target in nxt}
