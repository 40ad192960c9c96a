"""
Booking service tests against SQLite.

Every test that mutates seats finishes by checking the ledger invariant:
available seats equal total seats minus the seats held by pending,
confirmed, en-route and completed bookings.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from tripbook.domain.enums import BookingStatus, TripStatus, UserRole
from tripbook.domain.errors import (
    BookingNotFound,
    InsufficientCapacity,
    InvalidTransitionError,
    SuspendedError,
    TripClosedError,
    TripNotFound,
    ValidationError,
)
from tripbook.domain.entities import SuspensionState
from tripbook.infrastructure.repositories import SqlBookingRepository
from tripbook.services.booking_lifecycle import BookingService


async def assert_seat_invariant(uow_factory, trip_id: int) -> None:
    async with uow_factory() as uow:
        trip = await uow.trips.get(trip_id)
        held = await uow.bookings.seats_held(trip_id)
    assert trip.available_seats == trip.total_seats - held


class TestScenario:
    @pytest.mark.asyncio
    async def test_book_book_cancel(self, service, make_trip, uow_factory):
        trip = await make_trip(total_seats=4)

        a = await service.create_booking(trip.id, passenger_id=1, seats=2)
        t = await service.get_trip(trip.id)
        assert (t.available_seats, t.status) == (2, TripStatus.SCHEDULED)

        await service.create_booking(trip.id, passenger_id=2, seats=2)
        t = await service.get_trip(trip.id)
        assert (t.available_seats, t.status) == (0, TripStatus.FULLY_BOOKED)

        cancelled = await service.cancel_booking(a.id)
        assert cancelled.status == BookingStatus.CANCELLED
        t = await service.get_trip(trip.id)
        assert (t.available_seats, t.status) == (2, TripStatus.SCHEDULED)
        assert await service.get_cancellation_count(1, UserRole.PASSENGER) == 1

        await assert_seat_invariant(uow_factory, trip.id)


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_new_booking_is_pending(self, service, make_trip, publisher):
        trip = await make_trip(driver_id=100)
        booking = await service.create_booking(trip.id, passenger_id=7, seats=1)

        assert booking.id is not None
        assert booking.status == BookingStatus.PENDING
        assert booking.driver_id == 100
        assert publisher.names == ["booking.created"]
        assert publisher.events[0].payload["booking_id"] == booking.id

    @pytest.mark.asyncio
    async def test_not_enough_seats(self, service, make_trip, uow_factory):
        trip = await make_trip(total_seats=2)
        with pytest.raises(InsufficientCapacity):
            await service.create_booking(trip.id, passenger_id=1, seats=3)
        _, bookings = await service.get_trip_with_bookings(trip.id)
        assert bookings == []
        await assert_seat_invariant(uow_factory, trip.id)

    @pytest.mark.asyncio
    async def test_unknown_trip(self, service):
        with pytest.raises(TripNotFound):
            await service.create_booking(404, passenger_id=1, seats=1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seats", [0, -2])
    async def test_invalid_seat_count(self, service, make_trip, seats):
        trip = await make_trip()
        with pytest.raises(ValidationError):
            await service.create_booking(trip.id, passenger_id=1, seats=seats)

    @pytest.mark.asyncio
    async def test_driver_cannot_book_own_trip(self, service, make_trip):
        trip = await make_trip(driver_id=100)
        with pytest.raises(ValidationError):
            await service.create_booking(trip.id, passenger_id=100, seats=1)

    @pytest.mark.asyncio
    async def test_suspended_passenger_rejected(self, service, make_trip, uow_factory):
        trip = await make_trip(total_seats=1)
        async with uow_factory() as uow:
            await uow.suspensions.save(
                SuspensionState(user_id=9, is_suspended=True, reason="manual")
            )
            await uow.commit()

        with pytest.raises(SuspendedError) as info:
            await service.create_booking(trip.id, passenger_id=9, seats=1)
        assert info.value.reason == "manual"
        assert (await service.get_trip(trip.id)).available_seats == 1

    @pytest.mark.asyncio
    async def test_suspension_checked_before_capacity(self, service, make_trip, uow_factory):
        trip = await make_trip(total_seats=1)
        await service.create_booking(trip.id, passenger_id=1, seats=1)
        async with uow_factory() as uow:
            await uow.suspensions.save(SuspensionState(user_id=2, is_suspended=True))
            await uow.commit()

        with pytest.raises(SuspendedError):
            await service.create_booking(trip.id, passenger_id=2, seats=1)

    @pytest.mark.asyncio
    async def test_idempotency_key_returns_same_booking(self, service, make_trip):
        trip = await make_trip(total_seats=4)
        first = await service.create_booking(
            trip.id, passenger_id=1, seats=2, idempotency_key="retry-1"
        )
        second = await service.create_booking(
            trip.id, passenger_id=1, seats=2, idempotency_key="retry-1"
        )
        assert first.id == second.id
        assert (await service.get_trip(trip.id)).available_seats == 2

    @pytest.mark.asyncio
    async def test_idempotency_key_stored_by_concurrent_retry(
        self, service, make_trip, uow_factory
    ):
        trip = await make_trip(total_seats=4)
        first = await service.create_booking(
            trip.id, passenger_id=1, seats=1, idempotency_key="retry-2"
        )

        # The retry's lookup runs before the first insert is visible
        lookup = SqlBookingRepository.get_by_idempotency_key
        misses = []

        async def miss_once(self, key):
            if not misses:
                misses.append(key)
                return None
            return await lookup(self, key)

        with patch.object(SqlBookingRepository, "get_by_idempotency_key", miss_once):
            second = await service.create_booking(
                trip.id, passenger_id=1, seats=1, idempotency_key="retry-2"
            )

        assert misses == ["retry-2"]
        assert second.id == first.id
        assert (await service.get_trip(trip.id)).available_seats == 3
        await assert_seat_invariant(uow_factory, trip.id)

    @pytest.mark.asyncio
    async def test_closed_trip_not_bookable(self, service, make_trip):
        trip = await make_trip()
        await service.cancel_trip(trip.id)
        with pytest.raises(TripClosedError):
            await service.create_booking(trip.id, passenger_id=1, seats=1)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_full_happy_path(self, service, make_trip, uow_factory, publisher):
        trip = await make_trip(total_seats=3)
        booking = await service.create_booking(trip.id, passenger_id=1, seats=2)

        assert (await service.confirm_booking(booking.id)).status == BookingStatus.CONFIRMED
        assert (await service.start_trip(booking.id)).status == BookingStatus.ENROUTE
        done = await service.complete_booking(booking.id)

        assert done.status == BookingStatus.COMPLETED
        # completed bookings keep their seats
        assert (await service.get_trip(trip.id)).available_seats == 1
        assert publisher.names == [
            "booking.created",
            "booking.confirmed",
            "booking.started",
            "booking.completed",
        ]
        await assert_seat_invariant(uow_factory, trip.id)

    @pytest.mark.asyncio
    async def test_pending_cannot_be_completed(self, service, make_trip):
        trip = await make_trip()
        booking = await service.create_booking(trip.id, passenger_id=1, seats=1)
        with pytest.raises(InvalidTransitionError):
            await service.complete_booking(booking.id)
        assert (await service.get_booking(booking.id)).status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_completed_cannot_be_cancelled(self, service, make_trip):
        trip = await make_trip()
        booking = await service.create_booking(trip.id, passenger_id=1, seats=1)
        await service.confirm_booking(booking.id)
        await service.complete_booking(booking.id)
        with pytest.raises(InvalidTransitionError):
            await service.cancel_booking(booking.id)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, service):
        with pytest.raises(BookingNotFound):
            await service.confirm_booking(12345)

    @pytest.mark.asyncio
    async def test_complete_booking_is_idempotent(self, service, make_trip, publisher):
        trip = await make_trip()
        booking = await service.create_booking(trip.id, passenger_id=1, seats=1)
        await service.confirm_booking(booking.id)
        await service.complete_booking(booking.id)
        again = await service.complete_booking(booking.id)

        assert again.status == BookingStatus.COMPLETED
        assert publisher.names.count("booking.completed") == 1


class TestCancelBooking:
    @pytest.mark.asyncio
    async def test_cancel_twice_releases_once(self, service, make_trip, uow_factory):
        trip = await make_trip(total_seats=4)
        booking = await service.create_booking(trip.id, passenger_id=1, seats=3)

        first = await service.cancel_booking(booking.id, reason="plans changed")
        second = await service.cancel_booking(booking.id)

        assert first.status == second.status == BookingStatus.CANCELLED
        assert second.cancellation_reason == "plans changed"
        assert (await service.get_trip(trip.id)).available_seats == 4
        assert await service.get_cancellation_count(1, UserRole.PASSENGER) == 1
        await assert_seat_invariant(uow_factory, trip.id)

    @pytest.mark.asyncio
    async def test_confirmed_booking_can_be_cancelled(self, service, make_trip):
        trip = await make_trip(total_seats=2)
        booking = await service.create_booking(trip.id, passenger_id=1, seats=2)
        await service.confirm_booking(booking.id)

        await service.cancel_booking(booking.id)
        t = await service.get_trip(trip.id)
        assert (t.available_seats, t.status) == (2, TripStatus.SCHEDULED)

    @pytest.mark.asyncio
    async def test_driver_rejection_counts_against_driver(self, service, make_trip):
        trip = await make_trip(driver_id=100)
        booking = await service.create_booking(trip.id, passenger_id=1, seats=1)

        await service.cancel_booking(booking.id, cancelled_by=UserRole.DRIVER)

        assert await service.get_cancellation_count(100, UserRole.DRIVER) == 1
        assert await service.get_cancellation_count(1, UserRole.PASSENGER) == 0

    @pytest.mark.asyncio
    async def test_cancelled_event_carries_trip_state(self, service, make_trip, publisher):
        trip = await make_trip(total_seats=1)
        booking = await service.create_booking(trip.id, passenger_id=1, seats=1)
        await service.cancel_booking(booking.id)

        event = next(e for e in publisher.events if e.name == "booking.cancelled")
        assert publisher.names[-1] == "user.cancellation_warning"
        assert event.payload["available_seats"] == 1
        assert event.payload["trip_status"] == "scheduled"
        assert event.payload["attribution"] == "user-initiated"


class TestCompleteTrip:
    @pytest.mark.asyncio
    async def test_cascade(self, service, make_trip, uow_factory):
        trip = await make_trip(total_seats=4)
        confirmed = await service.create_booking(trip.id, passenger_id=1, seats=1)
        enroute = await service.create_booking(trip.id, passenger_id=2, seats=1)
        pending = await service.create_booking(trip.id, passenger_id=3, seats=1)
        await service.confirm_booking(confirmed.id)
        await service.confirm_booking(enroute.id)
        await service.start_trip(enroute.id)

        done = await service.complete_trip(trip.id)

        assert done.status == TripStatus.COMPLETED
        assert (await service.get_booking(confirmed.id)).status == BookingStatus.COMPLETED
        assert (await service.get_booking(enroute.id)).status == BookingStatus.COMPLETED
        assert (await service.get_booking(pending.id)).status == BookingStatus.CANCELLED
        # the never-accepted booking gave its seat back
        assert done.available_seats == 2
        # and it does not count against the passenger
        assert await service.get_cancellation_count(3, UserRole.PASSENGER) == 0
        await assert_seat_invariant(uow_factory, trip.id)

    @pytest.mark.asyncio
    async def test_complete_booking_leaves_trip_open(self, service, make_trip):
        trip = await make_trip(total_seats=4)
        a = await service.create_booking(trip.id, passenger_id=1, seats=1)
        b = await service.create_booking(trip.id, passenger_id=2, seats=1)
        await service.confirm_booking(a.id)
        await service.confirm_booking(b.id)

        await service.complete_booking(a.id)

        assert (await service.get_trip(trip.id)).status == TripStatus.SCHEDULED
        assert (await service.get_booking(b.id)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_complete_trip_is_idempotent(self, service, make_trip, publisher):
        trip = await make_trip()
        await service.complete_trip(trip.id)
        again = await service.complete_trip(trip.id)
        assert again.status == TripStatus.COMPLETED
        assert publisher.names.count("trip.completed") == 1

    @pytest.mark.asyncio
    async def test_cancelled_trip_cannot_complete(self, service, make_trip):
        trip = await make_trip()
        await service.cancel_trip(trip.id)
        with pytest.raises(InvalidTransitionError):
            await service.complete_trip(trip.id)


class TestCancelTrip:
    @pytest.mark.asyncio
    async def test_cancels_every_open_booking(self, service, make_trip, uow_factory, publisher):
        trip = await make_trip(total_seats=4, driver_id=100)
        a = await service.create_booking(trip.id, passenger_id=1, seats=2)
        b = await service.create_booking(trip.id, passenger_id=2, seats=2)
        await service.confirm_booking(b.id)

        cancelled = await service.cancel_trip(trip.id, reason="car broke down")

        assert cancelled.status == TripStatus.CANCELLED
        assert cancelled.available_seats == 4
        for booking_id in (a.id, b.id):
            booking = await service.get_booking(booking_id)
            assert booking.status == BookingStatus.CANCELLED
            assert booking.cancellation_reason == "car broke down"
        assert "trip.cancelled" in publisher.names
        await assert_seat_invariant(uow_factory, trip.id)

    @pytest.mark.asyncio
    async def test_one_event_against_the_driver(self, service, make_trip):
        trip = await make_trip(total_seats=4, driver_id=100)
        await service.create_booking(trip.id, passenger_id=1, seats=1)
        await service.create_booking(trip.id, passenger_id=2, seats=1)

        await service.cancel_trip(trip.id)

        assert await service.get_cancellation_count(100, UserRole.DRIVER) == 1
        assert await service.get_cancellation_count(1, UserRole.PASSENGER) == 0
        history = await service.get_cancellation_history(100)
        assert len(history) == 1
        assert history[0].booking_id is None
        assert history[0].trip_id == trip.id

    @pytest.mark.asyncio
    async def test_completed_trip_cannot_be_cancelled(self, service, make_trip):
        trip = await make_trip()
        await service.complete_trip(trip.id)
        with pytest.raises(InvalidTransitionError):
            await service.cancel_trip(trip.id)

    @pytest.mark.asyncio
    async def test_cancel_trip_is_idempotent(self, service, make_trip):
        trip = await make_trip(driver_id=100)
        await service.cancel_trip(trip.id)
        await service.cancel_trip(trip.id)
        assert await service.get_cancellation_count(100, UserRole.DRIVER) == 1


class TestTripQueries:
    @pytest.mark.asyncio
    async def test_trip_and_bookings_read_together(self, service, make_trip):
        trip = await make_trip(total_seats=4)
        a = await service.create_booking(trip.id, passenger_id=1, seats=1)
        b = await service.create_booking(trip.id, passenger_id=2, seats=2)

        opened = []
        factory = service.uow_factory

        def counting_factory():
            opened.append(1)
            return factory()

        service.uow_factory = counting_factory
        loaded, bookings = await service.get_trip_with_bookings(trip.id)

        assert len(opened) == 1
        assert loaded.available_seats == 1
        assert [x.id for x in bookings] == [a.id, b.id]

    @pytest.mark.asyncio
    async def test_unknown_trip(self, service):
        with pytest.raises(TripNotFound):
            await service.get_trip_with_bookings(404)


class TestEventPublishing:
    @pytest.mark.asyncio
    async def test_no_events_when_transaction_fails(self, service, make_trip, publisher):
        trip = await make_trip(total_seats=1)
        with pytest.raises(InsufficientCapacity):
            await service.create_booking(trip.id, passenger_id=1, seats=2)
        assert publisher.events == []

    @pytest.mark.asyncio
    async def test_publisher_failure_does_not_fail_booking(
        self, uow_factory, policy, clock, make_trip
    ):
        class BrokenPublisher:
            def publish(self, event):
                raise ConnectionError("redis down")

        broken = BookingService(uow_factory, BrokenPublisher(), policy, clock=clock)
        trip = await make_trip()
        booking = await broken.create_booking(trip.id, passenger_id=1, seats=1)
        assert (await broken.get_booking(booking.id)).status == BookingStatus.PENDING
