"""
Booking State Machine
=====================

Entry point for every booking / trip mutation.  Each public operation runs
in exactly one unit of work: the status change, the seat-ledger update, the
cancellation log entry and any suspension commit together or not at all.
Domain events are buffered and only handed to the publisher after commit.

Transitions
-----------
* (none)                          -> pending     reserve seats
* pending                         -> confirmed   driver accepts
* confirmed                       -> enroute     trip starts
* confirmed | enroute             -> completed   seats stay consumed
* pending | confirmed | enroute   -> cancelled   release seats, log event

Idempotency
-----------
Repeating ``cancel`` / ``complete`` on a booking already in that terminal
state returns it unchanged without touching the ledger.  Status writes are
conditional (``compare_and_set_status``), so of two concurrent cancels only
one releases seats; the other re-reads a cancelled booking and returns it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, Optional

from tripbook.domain.entities import (
    Booking,
    CancellationEvent,
    DomainEvent,
    SuspensionState,
    Trip,
)
from tripbook.domain.enums import (
    TERMINAL_BOOKING_STATUSES,
    BookingStatus,
    CancellationAttribution,
    TripStatus,
    UserRole,
    WarningLevel,
    allowed_sources,
)
from tripbook.domain.errors import (
    AlreadyTerminalNoOp,
    BookingNotFound,
    DuplicateIdempotencyKey,
    InvalidTransitionError,
    SuspendedError,
    TripNotFound,
    ValidationError,
)
from tripbook.domain.ports import EventPublisher, UnitOfWork
from tripbook.domain.suspension import SuspensionPolicy
from tripbook.services.cancellation_tracker import CancellationTracker
from tripbook.services.seat_ledger import SeatLedger

logger = logging.getLogger(__name__)

ACTIVE_BOOKING_STATUSES = frozenset(set(BookingStatus) - TERMINAL_BOOKING_STATUSES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Transaction:
    uow: UnitOfWork
    ledger: SeatLedger
    tracker: CancellationTracker
    events: list[DomainEvent] = field(default_factory=list)


class BookingService:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        publisher: EventPublisher,
        policy: Optional[SuspensionPolicy] = None,
        *,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.uow_factory = uow_factory
        self.publisher = publisher
        self.policy = policy or SuspensionPolicy()
        self.max_attempts = max_attempts
        self.clock = clock

    # ── Booking operations ────────────────────────────────────────────

    async def create_booking(
        self,
        trip_id: int,
        passenger_id: int,
        seats: int,
        idempotency_key: Optional[str] = None,
    ) -> Booking:
        if not isinstance(seats, int) or seats < 1:
            raise ValidationError(f"seats must be a positive integer, got {seats!r}")

        try:
            return await self._create_booking(trip_id, passenger_id, seats, idempotency_key)
        except DuplicateIdempotencyKey:
            # A concurrent retry stored it first; its seats are the only ones taken
            async with self._transaction() as tx:
                existing = await tx.uow.bookings.get_by_idempotency_key(idempotency_key)
            if existing is None:
                raise
            logger.info(
                "Idempotency key %s raced, returning booking %s",
                idempotency_key, existing.id,
            )
            return existing

    async def _create_booking(
        self,
        trip_id: int,
        passenger_id: int,
        seats: int,
        idempotency_key: Optional[str],
    ) -> Booking:
        async with self._transaction() as tx:
            if idempotency_key:
                existing = await tx.uow.bookings.get_by_idempotency_key(idempotency_key)
                if existing:
                    return existing

            state = await tx.uow.suspensions.get(passenger_id)
            if state and state.is_suspended:
                raise SuspendedError(passenger_id, state.reason)

            trip = await tx.uow.trips.get(trip_id)
            if trip is None:
                raise TripNotFound(trip_id)
            if trip.driver_id == passenger_id:
                raise ValidationError("Drivers cannot book seats on their own trip")

            trip = await tx.ledger.reserve(trip_id, seats)
            now = self.clock()
            booking = await tx.uow.bookings.add(
                Booking(
                    trip_id=trip_id,
                    passenger_id=passenger_id,
                    driver_id=trip.driver_id,
                    seats=seats,
                    status=BookingStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                ),
                idempotency_key=idempotency_key,
            )
            self._emit(tx, "booking.created", booking, trip_status=trip.status.value)

        logger.info(
            "Booking %s created: passenger %s, %d seat(s) on trip %s",
            booking.id, passenger_id, seats, trip_id,
        )
        return booking

    async def confirm_booking(self, booking_id: int) -> Booking:
        async with self._transaction() as tx:
            booking, _ = await self._transition(tx, booking_id, BookingStatus.CONFIRMED)
            self._emit(tx, "booking.confirmed", booking)
        return booking

    async def start_trip(self, booking_id: int) -> Booking:
        async with self._transaction() as tx:
            booking, _ = await self._transition(tx, booking_id, BookingStatus.ENROUTE)
            self._emit(tx, "booking.started", booking)
        return booking

    async def cancel_booking(
        self,
        booking_id: int,
        reason: Optional[str] = None,
        cancelled_by: UserRole = UserRole.PASSENGER,
    ) -> Booking:
        async with self._transaction() as tx:
            booking, _ = await self._cancel(
                tx,
                booking_id,
                reason=reason,
                role=cancelled_by,
                attribution=CancellationAttribution.USER_INITIATED,
            )
        return booking

    async def expire_booking(self, booking_id: int) -> Optional[Booking]:
        """Cancel a still-pending booking on behalf of the system.

        Returns None when the booking is no longer pending (confirmed or
        cancelled in the meantime); nothing is changed in that case.
        """
        async with self._transaction() as tx:
            try:
                booking, changed = await self._cancel(
                    tx,
                    booking_id,
                    reason="expired: not confirmed in time",
                    role=UserRole.PASSENGER,
                    attribution=CancellationAttribution.SYSTEM_EXPIRED,
                    from_statuses={BookingStatus.PENDING},
                )
            except InvalidTransitionError as exc:
                logger.debug("Booking %s no longer pending (%s)", booking_id, exc)
                return None
        return booking if changed else None

    async def complete_booking(self, booking_id: int) -> Booking:
        """Complete one booking; the trip and its other bookings are untouched."""
        async with self._transaction() as tx:
            booking, changed = await self._transition(
                tx, booking_id, BookingStatus.COMPLETED
            )
            if changed:
                self._emit(tx, "booking.completed", booking)
        return booking

    async def get_booking(self, booking_id: int) -> Booking:
        async with self._transaction() as tx:
            return await self._load_booking(tx, booking_id)

    # ── Trip operations ───────────────────────────────────────────────

    async def get_trip(self, trip_id: int) -> Trip:
        async with self._transaction() as tx:
            return await self._load_trip(tx, trip_id)

    async def get_trip_with_bookings(self, trip_id: int) -> tuple[Trip, list[Booking]]:
        """The trip and all of its bookings, read in one transaction."""
        async with self._transaction() as tx:
            trip = await self._load_trip(tx, trip_id)
            return trip, await tx.uow.bookings.list_for_trip(trip_id)

    async def complete_trip(self, trip_id: int) -> Trip:
        """Close the whole trip and cascade to every non-terminal booking.

        confirmed / enroute bookings complete; pending ones were never
        accepted by the driver and are cancelled as ``system-expired``.
        """
        async with self._transaction() as tx:
            trip = await self._load_trip(tx, trip_id)
            if trip.status == TripStatus.COMPLETED:
                logger.debug("Trip %s already completed", trip_id)
                return trip
            if trip.status == TripStatus.CANCELLED:
                raise InvalidTransitionError(trip.status.value, TripStatus.COMPLETED.value)

            # Close first so no new reservation can slip in behind the cascade
            trip = await tx.ledger.close(trip_id, TripStatus.COMPLETED)
            completed = cancelled = 0
            for booking in await tx.uow.bookings.list_for_trip(
                trip_id, ACTIVE_BOOKING_STATUSES
            ):
                if booking.status == BookingStatus.PENDING:
                    _, changed = await self._cancel(
                        tx,
                        booking.id,
                        reason="trip completed before confirmation",
                        role=UserRole.PASSENGER,
                        attribution=CancellationAttribution.SYSTEM_EXPIRED,
                        from_statuses={BookingStatus.PENDING},
                    )
                    cancelled += changed
                else:
                    done, changed = await self._transition(
                        tx, booking.id, BookingStatus.COMPLETED
                    )
                    if changed:
                        completed += 1
                        self._emit(tx, "booking.completed", done)

            trip = await self._load_trip(tx, trip_id)
            self._emit_trip(
                tx, "trip.completed", trip,
                completed_bookings=completed, cancelled_bookings=cancelled,
            )

        logger.info(
            "Trip %s completed (%d booking(s) completed, %d pending cancelled)",
            trip_id, completed, cancelled,
        )
        return trip

    async def cancel_trip(self, trip_id: int, reason: Optional[str] = None) -> Trip:
        """Driver cancels the trip: every open booking is cancelled.

        One cancellation event is logged against the driver (not the
        passengers) and the driver's suspension is re-evaluated.
        """
        async with self._transaction() as tx:
            trip = await self._load_trip(tx, trip_id)
            if trip.status == TripStatus.CANCELLED:
                logger.debug("Trip %s already cancelled", trip_id)
                return trip
            if trip.status == TripStatus.COMPLETED:
                raise InvalidTransitionError(trip.status.value, TripStatus.CANCELLED.value)

            await tx.ledger.close(trip_id, TripStatus.CANCELLED)
            cancelled = 0
            for booking in await tx.uow.bookings.list_for_trip(
                trip_id, ACTIVE_BOOKING_STATUSES
            ):
                _, changed = await self._cancel(
                    tx,
                    booking.id,
                    reason=reason or "trip cancelled by driver",
                    role=UserRole.DRIVER,
                    attribution=CancellationAttribution.USER_INITIATED,
                    log=False,
                )
                cancelled += changed

            await tx.tracker.record_cancellation(
                trip.driver_id,
                UserRole.DRIVER,
                None,
                CancellationAttribution.USER_INITIATED,
                trip_id=trip_id,
                reason=reason,
            )
            await tx.tracker.evaluate_suspension(trip.driver_id, UserRole.DRIVER)

            trip = await self._load_trip(tx, trip_id)
            self._emit_trip(tx, "trip.cancelled", trip, cancelled_bookings=cancelled, reason=reason)

        logger.info("Trip %s cancelled by driver (%d booking(s) released)", trip_id, cancelled)
        return trip

    async def recalculate_trip(self, trip_id: int) -> Trip:
        async with self._transaction() as tx:
            return await tx.ledger.recalculate(trip_id)

    # ── Cancellation / suspension queries ─────────────────────────────

    async def get_cancellation_count(self, user_id: int, role: UserRole) -> int:
        async with self._transaction() as tx:
            return await tx.tracker.count_cancellations(user_id, role)

    async def get_cancellation_warning(self, user_id: int, role: UserRole) -> WarningLevel:
        async with self._transaction() as tx:
            return await tx.tracker.warning_level(user_id, role)

    async def is_user_suspended(self, user_id: int) -> bool:
        async with self._transaction() as tx:
            return await tx.tracker.is_user_suspended(user_id)

    async def get_suspension(self, user_id: int) -> SuspensionState:
        async with self._transaction() as tx:
            return await tx.tracker.suspension_state(user_id)

    async def get_cancellation_history(
        self, user_id: int, limit: int = 50
    ) -> list[CancellationEvent]:
        async with self._transaction() as tx:
            return await tx.tracker.history(user_id, limit)

    async def get_cancellation_statistics(self, days: int = 30) -> dict:
        async with self._transaction() as tx:
            return await tx.tracker.statistics(days)

    async def reactivate_user(
        self, user_id: int, reason: str, reset_cancellations: bool = False
    ) -> SuspensionState:
        async with self._transaction() as tx:
            return await tx.tracker.reactivate(user_id, reason, reset_cancellations)

    # ── Internals ─────────────────────────────────────────────────────

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[_Transaction]:
        async with self.uow_factory() as uow:
            tx = _Transaction(
                uow=uow,
                ledger=SeatLedger(uow, self.max_attempts, self.clock),
                tracker=CancellationTracker(uow, self.policy, self.clock),
            )
            yield tx
            await uow.commit()
        self._publish(tx.events + tx.tracker.events)

    async def _load_booking(self, tx: _Transaction, booking_id: int) -> Booking:
        booking = await tx.uow.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    async def _load_trip(self, tx: _Transaction, trip_id: int) -> Trip:
        trip = await tx.uow.trips.get(trip_id)
        if trip is None:
            raise TripNotFound(trip_id)
        return trip

    async def _transition(
        self,
        tx: _Transaction,
        booking_id: int,
        target: BookingStatus,
        *,
        from_statuses: Optional[Iterable[BookingStatus]] = None,
        reason: Optional[str] = None,
    ) -> tuple[Booking, bool]:
        """Apply one status change with a conditional write.

        Returns ``(booking, changed)``; ``changed`` is False for an
        idempotent repeat of a terminal transition.
        """
        sources = set(from_statuses) if from_statuses else allowed_sources(target)
        for _ in range(self.max_attempts):
            booking = await self._load_booking(tx, booking_id)
            try:
                booking.check_transition(target)
            except AlreadyTerminalNoOp:
                logger.debug("Booking %s already %s", booking_id, target.value)
                return booking, False
            if booking.status not in sources:
                raise InvalidTransitionError(booking.status.value, target.value)

            now = self.clock()
            if await tx.uow.bookings.compare_and_set_status(
                booking_id, {booking.status}, target, at=now, reason=reason
            ):
                logger.info(
                    "Booking %s: %s -> %s", booking_id, booking.status.value, target.value
                )
                booking.status = target
                booking.updated_at = now
                if reason is not None:
                    booking.cancellation_reason = reason
                return booking, True
            # Lost against a concurrent writer; re-read and judge again
        raise InvalidTransitionError(
            "unknown", target.value, f"Booking {booking_id} keeps changing, try again"
        )

    async def _cancel(
        self,
        tx: _Transaction,
        booking_id: int,
        *,
        reason: Optional[str],
        role: UserRole,
        attribution: CancellationAttribution,
        from_statuses: Optional[Iterable[BookingStatus]] = None,
        log: bool = True,
    ) -> tuple[Booking, bool]:
        # Trip row first: the trip-wide cascades lock trip, then bookings
        current = await self._load_booking(tx, booking_id)
        await tx.uow.trips.lock(current.trip_id)

        booking, changed = await self._transition(
            tx,
            booking_id,
            BookingStatus.CANCELLED,
            from_statuses=from_statuses,
            reason=reason,
        )
        if not changed:
            return booking, False

        trip = await tx.ledger.release(booking.trip_id, booking.seats)
        if log:
            user_id = booking.passenger_id if role == UserRole.PASSENGER else booking.driver_id
            await tx.tracker.record_cancellation(
                user_id,
                role,
                booking.id,
                attribution,
                trip_id=booking.trip_id,
                reason=reason,
            )
            if attribution in self.policy.counted_attributions:
                await tx.tracker.evaluate_suspension(user_id, role)

        self._emit(
            tx,
            "booking.cancelled",
            booking,
            cancelled_by=role.value,
            attribution=attribution.value,
            reason=reason,
            trip_status=trip.status.value,
            available_seats=trip.available_seats,
        )
        return booking, True

    def _emit(self, tx: _Transaction, name: str, booking: Booking, **extra) -> None:
        payload = {
            "booking_id": booking.id,
            "trip_id": booking.trip_id,
            "passenger_id": booking.passenger_id,
            "driver_id": booking.driver_id,
            "seats": booking.seats,
            "status": booking.status.value,
        }
        payload.update(extra)
        tx.events.append(DomainEvent(name=name, occurred_at=self.clock(), payload=payload))

    def _emit_trip(self, tx: _Transaction, name: str, trip: Trip, **extra) -> None:
        payload = {
            "trip_id": trip.id,
            "driver_id": trip.driver_id,
            "status": trip.status.value,
            "available_seats": trip.available_seats,
        }
        payload.update(extra)
        tx.events.append(DomainEvent(name=name, occurred_at=self.clock(), payload=payload))

    def _publish(self, events: list[DomainEvent]) -> None:
        for event in events:
            try:
                self.publisher.publish(event)
            except Exception:
                logger.exception("Failed to hand off event %s", event.name)
