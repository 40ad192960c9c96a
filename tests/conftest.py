"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Every transaction opens with
``BEGIN IMMEDIATE`` so concurrent units of work serialise on the write
lock the way row locks serialise them in PostgreSQL.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tripbook.domain.entities import Trip
from tripbook.domain.enums import TripStatus
from tripbook.domain.ports import EventPublisher
from tripbook.domain.suspension import SuspensionPolicy
from tripbook.infrastructure.database import Base
from tripbook.infrastructure import models  # noqa: F401  (registers tables)
from tripbook.infrastructure.repositories import SqlAlchemyUnitOfWork
from tripbook.services.booking_lifecycle import BookingService
from tripbook.services.expiration import ExpirationSweeper


class FakeClock:
    """Controllable UTC clock shared by the service, tracker and sweeper."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingPublisher(EventPublisher):
    def __init__(self):
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.events]


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tripbook.db'}",
        connect_args={"timeout": 15},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    def _factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def policy() -> SuspensionPolicy:
    return SuspensionPolicy(window_days=15, threshold=3)


@pytest.fixture
def service(uow_factory, publisher, policy, clock) -> BookingService:
    return BookingService(uow_factory, publisher, policy, max_attempts=5, clock=clock)


@pytest.fixture
def sweeper(service, uow_factory, clock) -> ExpirationSweeper:
    return ExpirationSweeper(
        service, uow_factory, retention=timedelta(days=30), clock=clock
    )


@pytest.fixture
def make_trip(uow_factory, clock):
    """Insert a trip and return it; seats default to a 4-seat car."""

    async def _make(
        total_seats: int = 4, driver_id: int = 100, available_seats: int | None = None
    ) -> Trip:
        async with uow_factory() as uow:
            trip = await uow.trips.add(
                Trip(
                    driver_id=driver_id,
                    total_seats=total_seats,
                    available_seats=(
                        total_seats if available_seats is None else available_seats
                    ),
                    status=TripStatus.SCHEDULED,
                    departure_city="Lyon",
                    arrival_city="Paris",
                    departure_at=clock() + timedelta(days=2),
                    created_at=clock(),
                )
            )
            await uow.commit()
        return trip

    return _make


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
