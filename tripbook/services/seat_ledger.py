"""
Seat Ledger
===========

The only component allowed to write ``Trip.available_seats``.

Every mutation is an optimistic read-modify-write:

1. read the trip (seat counts + version),
2. compute the new seat count and re-derive the status,
3. ``compare_and_set`` keyed on the version that was read.

A lost race (``compare_and_set`` returns False) is retried up to
``max_attempts`` times with a fresh read; after that the conflict surfaces
as ``TransientFailure``.  No external lock is involved, so two concurrent
reservations for the last seat serialize on the version column and the
loser re-reads a trip with zero seats left.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from tripbook.domain.entities import Trip
from tripbook.domain.enums import TripStatus
from tripbook.domain.errors import (
    InsufficientCapacity,
    PersistenceConflict,
    TransientFailure,
    TripClosedError,
    TripNotFound,
    ValidationError,
)
from tripbook.domain.ports import UnitOfWork
from tripbook.domain.trip_status import derive_trip_status

logger = logging.getLogger(__name__)

# (trip) -> (new available_seats, terminal override or None)
Mutation = Callable[[Trip], tuple]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SeatLedger:
    def __init__(
        self,
        uow: UnitOfWork,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.uow = uow
        self.max_attempts = max_attempts
        self.clock = clock

    # ── Public API ────────────────────────────────────────────────────

    async def reserve(self, trip_id: int, seats: int) -> Trip:
        """Take *seats* from the trip or raise ``InsufficientCapacity``."""
        _check_seats(seats)

        def take(trip: Trip):
            if trip.is_closed:
                raise TripClosedError(trip.id, trip.status.value)
            if not trip.has_capacity(seats):
                raise InsufficientCapacity(trip.id, seats, trip.available_seats)
            return trip.available_seats - seats, None

        trip = await self._mutate(trip_id, take)
        logger.info(
            "Reserved %d seat(s) on trip %s (%d left)",
            seats, trip_id, trip.available_seats,
        )
        return trip

    async def release(self, trip_id: int, seats: int) -> Trip:
        """Give *seats* back, clamped to the trip's capacity."""
        _check_seats(seats)

        def give_back(trip: Trip):
            return min(trip.available_seats + seats, trip.total_seats), trip.terminal_action

        trip = await self._mutate(trip_id, give_back)
        logger.info(
            "Released %d seat(s) on trip %s (%d left)",
            seats, trip_id, trip.available_seats,
        )
        return trip

    async def recalculate(self, trip_id: int) -> Trip:
        """Rebuild ``available_seats`` from the live bookings (drift repair)."""
        seats_held = await self.uow.bookings.seats_held(trip_id)

        def reconcile(trip: Trip):
            expected = max(trip.total_seats - seats_held, 0)
            if expected != trip.available_seats:
                logger.warning(
                    "Seat drift on trip %s: stored=%d expected=%d",
                    trip_id, trip.available_seats, expected,
                )
            return expected, trip.terminal_action

        return await self._mutate(trip_id, reconcile)

    async def close(self, trip_id: int, terminal: TripStatus) -> Trip:
        """Apply the driver's completed/cancelled override; seats untouched."""

        def override(trip: Trip):
            return trip.available_seats, terminal

        return await self._mutate(trip_id, override)

    # ── Internals ─────────────────────────────────────────────────────

    async def _mutate(self, trip_id: int, mutation: Mutation) -> Trip:
        for attempt in range(1, self.max_attempts + 1):
            trip = await self.uow.trips.get(trip_id)
            if trip is None:
                raise TripNotFound(trip_id)

            available, terminal = mutation(trip)
            status = derive_trip_status(available, trip.total_seats, terminal)
            if await self.uow.trips.compare_and_set(
                trip_id,
                trip.version,
                available_seats=available,
                status=status,
                at=self.clock(),
            ):
                trip.available_seats = available
                trip.status = status
                trip.version += 1
                return trip

            logger.debug(
                "Version conflict on trip %s (attempt %d/%d)",
                trip_id, attempt, self.max_attempts,
            )

        logger.warning(
            "Gave up on trip %s after %d conflicting writes", trip_id, self.max_attempts
        )
        raise TransientFailure(
            f"Trip {trip_id} is being modified concurrently, try again"
        ) from PersistenceConflict(f"trip {trip_id}")


def _check_seats(seats: int) -> None:
    if not isinstance(seats, int) or seats < 1:
        raise ValidationError(f"seats must be a positive integer, got {seats!r}")
