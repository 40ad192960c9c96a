"""
Error taxonomy for the booking engine.

Business rejections (``InsufficientCapacity``, ``InvalidTransitionError``,
``SuspendedError``) are correct answers and are never retried.
``PersistenceConflict`` is retried locally by the seat ledger and surfaces
as ``TransientFailure`` once the attempts are used up.
"""

from __future__ import annotations


class TripBookingError(Exception):
    """Base class for every error raised by the engine."""

    code = "error"


class ValidationError(TripBookingError):
    """Malformed request; rejected before touching shared state."""

    code = "validation_error"


class NotFoundError(TripBookingError):
    code = "not_found"


class TripNotFound(NotFoundError):
    def __init__(self, trip_id: int):
        self.trip_id = trip_id
        super().__init__(f"Trip {trip_id} not found")


class BookingNotFound(NotFoundError):
    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class InsufficientCapacity(TripBookingError):
    code = "insufficient_capacity"

    def __init__(self, trip_id: int, requested: int, available: int):
        self.trip_id = trip_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Trip {trip_id} has {available} seat(s) left, {requested} requested"
        )


class InvalidTransitionError(TripBookingError):
    """Raised when a status change violates the state machine."""

    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: str | None = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot transition from {current} to {target}")


class TripClosedError(InvalidTransitionError):
    """The trip was completed or cancelled by its driver."""

    def __init__(self, trip_id: int, status: str):
        self.trip_id = trip_id
        super().__init__(
            status, "booked", f"Trip {trip_id} is {status} and no longer bookable"
        )


class SuspendedError(TripBookingError):
    code = "suspended"

    def __init__(self, user_id: int, reason: str | None):
        self.user_id = user_id
        self.reason = reason
        super().__init__(
            f"User {user_id} is suspended: {reason or 'no reason recorded'}"
        )


class AlreadyTerminalNoOp(TripBookingError):
    """Idempotent retry of a terminal transition; callers treat it as success."""

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Already {status}")


class PersistenceConflict(TripBookingError):
    """A conditional write or unique insert lost against a concurrent writer."""

    code = "conflict"


class TransientFailure(TripBookingError):
    code = "transient_failure"


class PersistenceError(TripBookingError):
    """The store is unavailable or rejected the statement."""

    code = "persistence_error"


class DuplicateIdempotencyKey(PersistenceConflict):
    """Another request stored a booking under the same idempotency key first."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Idempotency key {key!r} already used")
