"""
Seed script -- populates the database with sample trips and bookings.

Run after migrations:
    python seed.py

Creates:
  - 6 sample trips between a handful of cities (one already full)
  - 8 sample bookings (mix of pending, confirmed, cancelled)
  - a stale pending booking that the next expiration sweep will cancel

Seat counts are written through the same ledger the API uses, so
``available_seats`` always matches the bookings created here.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from tripbook.domain.entities import Booking, Trip
from tripbook.domain.enums import BookingStatus, TripStatus
from tripbook.infrastructure.database import async_session_factory, engine
from tripbook.infrastructure.models import TripModel
from tripbook.infrastructure.repositories import SqlAlchemyUnitOfWork
from tripbook.services.seat_ledger import SeatLedger

NOW = datetime.now(timezone.utc)

TRIPS = [
    {"driver_id": 101, "seats": 3, "from": "Lyon", "to": "Paris", "in_hours": 20},
    {"driver_id": 102, "seats": 4, "from": "Paris", "to": "Lille", "in_hours": 30},
    {"driver_id": 103, "seats": 2, "from": "Bordeaux", "to": "Toulouse", "in_hours": 8},
    {"driver_id": 104, "seats": 4, "from": "Nantes", "to": "Rennes", "in_hours": 48},
    {"driver_id": 105, "seats": 1, "from": "Marseille", "to": "Nice", "in_hours": 5},
    {"driver_id": 101, "seats": 3, "from": "Paris", "to": "Lyon", "in_hours": 72},
]

# (trip index, passenger, seats, final status, age in hours)
BOOKINGS = [
    (0, 201, 1, BookingStatus.CONFIRMED, 2),
    (0, 202, 2, BookingStatus.PENDING, 1),
    (1, 203, 1, BookingStatus.PENDING, 3),
    (1, 204, 1, BookingStatus.CANCELLED, 5),
    (2, 205, 1, BookingStatus.CONFIRMED, 6),
    (3, 206, 2, BookingStatus.PENDING, 30),  # stale: picked up by the sweeper
    (4, 207, 1, BookingStatus.CONFIRMED, 1),
    (5, 208, 1, BookingStatus.PENDING, 4),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(TripModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

    async with SqlAlchemyUnitOfWork() as uow:
        # ── Trips ─────────────────────────────────────────────────────
        trips = []
        for t in TRIPS:
            trip = await uow.trips.add(
                Trip(
                    id=None,
                    driver_id=t["driver_id"],
                    total_seats=t["seats"],
                    available_seats=t["seats"],
                    status=TripStatus.SCHEDULED,
                    departure_city=t["from"],
                    arrival_city=t["to"],
                    departure_at=NOW + timedelta(hours=t["in_hours"]),
                )
            )
            trips.append(trip)
        print(f"  Created {len(trips)} trips")

        # ── Bookings ──────────────────────────────────────────────────
        ledger = SeatLedger(uow)
        for trip_idx, passenger_id, seats, status, age_hours in BOOKINGS:
            trip = trips[trip_idx]
            created_at = NOW - timedelta(hours=age_hours)
            booking = await uow.bookings.add(
                Booking(
                    id=None,
                    trip_id=trip.id,
                    passenger_id=passenger_id,
                    driver_id=trip.driver_id,
                    seats=seats,
                    status=status,
                    created_at=created_at,
                )
            )
            if status is not BookingStatus.CANCELLED:
                await ledger.reserve(trip.id, booking.seats)
        print(f"  Created {len(BOOKINGS)} bookings")

        await uow.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
