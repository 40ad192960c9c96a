"""
Repository Pattern -- SQLAlchemy implementations of ``tripbook.domain.ports``.

Each repository receives an ``AsyncSession`` (unit-of-work) and returns
domain dataclasses, never ORM objects.  Conditional writes are issued as
core ``UPDATE ... WHERE`` statements and judged by ``rowcount``; reads use
``populate_existing`` so a retry after a lost race sees the current row
instead of a stale identity-map copy.

Row locks (``lock``) are always taken trip first, then booking, then the
user's suspension row.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .database import async_session_factory
from .models import BookingModel, CancellationEventModel, SuspensionModel, TripModel
from tripbook.domain.entities import Booking, CancellationEvent, SuspensionState, Trip
from tripbook.domain.enums import (
    SEAT_HOLDING_STATUSES,
    BookingStatus,
    CancellationAttribution,
    TripStatus,
    UserRole,
)
from tripbook.domain.errors import DuplicateIdempotencyKey, PersistenceError
from tripbook.domain.ports import (
    BookingRepository,
    CancellationLog,
    SuspensionRepository,
    TripRepository,
    UnitOfWork,
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything in the domain is UTC-aware."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Mappers ───────────────────────────────────────────────────────────


def _to_trip(row: TripModel) -> Trip:
    return Trip(
        id=row.id,
        driver_id=row.driver_id,
        total_seats=row.total_seats,
        available_seats=row.available_seats,
        status=TripStatus(row.status),
        version=row.version,
        departure_city=row.departure_city,
        arrival_city=row.arrival_city,
        departure_at=_utc(row.departure_at),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def _to_booking(row: BookingModel) -> Booking:
    return Booking(
        id=row.id,
        trip_id=row.trip_id,
        passenger_id=row.passenger_id,
        driver_id=row.driver_id,
        seats=row.seats,
        status=BookingStatus(row.status),
        cancellation_reason=row.cancellation_reason,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def _to_event(row: CancellationEventModel) -> CancellationEvent:
    return CancellationEvent(
        id=row.id,
        user_id=row.user_id,
        role=UserRole(row.role),
        attribution=CancellationAttribution(row.attribution),
        occurred_at=_utc(row.occurred_at),
        booking_id=row.booking_id,
        trip_id=row.trip_id,
        reason=row.reason,
    )


def _to_suspension(row: SuspensionModel) -> SuspensionState:
    return SuspensionState(
        user_id=row.user_id,
        is_suspended=row.is_suspended,
        reason=row.reason,
        suspended_at=_utc(row.suspended_at),
        reactivated_at=_utc(row.reactivated_at),
        cancellations_reset_at=_utc(row.cancellations_reset_at),
    )


# ── Repositories ──────────────────────────────────────────────────────


class SqlTripRepository(TripRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, trip: Trip) -> Trip:
        created_at = trip.created_at or datetime.now(timezone.utc)
        row = TripModel(
            driver_id=trip.driver_id,
            total_seats=trip.total_seats,
            available_seats=trip.available_seats,
            status=trip.status,
            version=trip.version,
            departure_city=trip.departure_city,
            arrival_city=trip.arrival_city,
            departure_at=trip.departure_at,
            created_at=created_at,
            updated_at=trip.updated_at or created_at,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_trip(row)

    async def get(self, trip_id: int) -> Optional[Trip]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_trip(row) if row else None

    async def lock(self, trip_id: int) -> Optional[Trip]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_trip(row) if row else None

    async def compare_and_set(
        self,
        trip_id: int,
        expected_version: int,
        *,
        available_seats: int,
        status: TripStatus,
        at: datetime,
    ) -> bool:
        result = await self.session.execute(
            update(TripModel)
            .where(TripModel.id == trip_id, TripModel.version == expected_version)
            .values(
                available_seats=available_seats,
                status=status,
                version=TripModel.version + 1,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SqlBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, booking: Booking, idempotency_key: Optional[str] = None) -> Booking:
        created_at = booking.created_at or datetime.now(timezone.utc)
        row = BookingModel(
            trip_id=booking.trip_id,
            passenger_id=booking.passenger_id,
            driver_id=booking.driver_id,
            seats=booking.seats,
            status=booking.status,
            idempotency_key=idempotency_key,
            created_at=created_at,
            updated_at=booking.updated_at or created_at,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            if idempotency_key is None:
                raise
            raise DuplicateIdempotencyKey(idempotency_key) from exc
        return _to_booking(row)

    async def get(self, booking_id: int) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_booking(row) if row else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel).where(BookingModel.idempotency_key == key)
        )
        row = result.scalar_one_or_none()
        return _to_booking(row) if row else None

    async def compare_and_set_status(
        self,
        booking_id: int,
        from_statuses: Iterable[BookingStatus],
        to_status: BookingStatus,
        *,
        at: datetime,
        reason: Optional[str] = None,
    ) -> bool:
        values = {"status": to_status, "updated_at": at}
        if reason is not None:
            values["cancellation_reason"] = reason[:255]
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_for_trip(
        self, trip_id: int, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[Booking]:
        query = (
            select(BookingModel)
            .where(BookingModel.trip_id == trip_id)
            .order_by(BookingModel.id)
            .execution_options(populate_existing=True)
        )
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        result = await self.session.execute(query)
        return [_to_booking(r) for r in result.scalars().all()]

    async def seats_held(self, trip_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(BookingModel.seats), 0)).where(
                BookingModel.trip_id == trip_id,
                BookingModel.status.in_(list(SEAT_HOLDING_STATUSES)),
            )
        )
        return int(result.scalar() or 0)

    async def stale_pending_ids(self, created_before: datetime) -> list[int]:
        result = await self.session.execute(
            select(BookingModel.id)
            .where(
                BookingModel.status == BookingStatus.PENDING,
                BookingModel.created_at < created_before,
            )
            .order_by(BookingModel.created_at)
        )
        return list(result.scalars().all())


class SqlCancellationLog(CancellationLog):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, event: CancellationEvent) -> CancellationEvent:
        row = CancellationEventModel(
            user_id=event.user_id,
            role=event.role,
            attribution=event.attribution,
            booking_id=event.booking_id,
            trip_id=event.trip_id,
            reason=event.reason[:255] if event.reason else None,
            occurred_at=event.occurred_at,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_event(row)

    async def count(
        self,
        user_id: int,
        role: UserRole,
        since: datetime,
        attributions: Iterable[CancellationAttribution],
    ) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(CancellationEventModel)
            .where(
                CancellationEventModel.user_id == user_id,
                CancellationEventModel.role == role,
                CancellationEventModel.occurred_at >= since,
                CancellationEventModel.attribution.in_(list(attributions)),
            )
        )
        return result.scalar() or 0

    async def history(self, user_id: int, limit: int = 50) -> list[CancellationEvent]:
        result = await self.session.execute(
            select(CancellationEventModel)
            .where(CancellationEventModel.user_id == user_id)
            .order_by(CancellationEventModel.occurred_at.desc(), CancellationEventModel.id.desc())
            .limit(limit)
        )
        return [_to_event(r) for r in result.scalars().all()]

    async def since(self, since: datetime) -> list[CancellationEvent]:
        result = await self.session.execute(
            select(CancellationEventModel).where(
                CancellationEventModel.occurred_at >= since
            )
        )
        return [_to_event(r) for r in result.scalars().all()]

    async def purge_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(CancellationEventModel)
            .where(CancellationEventModel.occurred_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class SqlSuspensionRepository(SuspensionRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int) -> Optional[SuspensionState]:
        row = await self.session.get(SuspensionModel, user_id, populate_existing=True)
        return _to_suspension(row) if row else None

    async def lock(self, user_id: int) -> SuspensionState:
        dialect = postgresql if self.session.bind.dialect.name == "postgresql" else sqlite
        await self.session.execute(
            dialect.insert(SuspensionModel)
            .values(user_id=user_id, is_suspended=False)
            .on_conflict_do_nothing(index_elements=[SuspensionModel.user_id])
        )
        result = await self.session.execute(
            select(SuspensionModel)
            .where(SuspensionModel.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return _to_suspension(result.scalar_one())

    async def save(self, state: SuspensionState) -> SuspensionState:
        row = await self.session.get(SuspensionModel, state.user_id)
        if row is None:
            row = SuspensionModel(user_id=state.user_id)
            self.session.add(row)
        row.is_suspended = state.is_suspended
        row.reason = state.reason
        row.suspended_at = state.suspended_at
        row.reactivated_at = state.reactivated_at
        row.cancellations_reset_at = state.cancellations_reset_at
        await self.session.flush()
        return _to_suspension(row)


# ── Unit of work ──────────────────────────────────────────────────────


class SqlAlchemyUnitOfWork(UnitOfWork):
    """One ``AsyncSession`` per unit of work; rolls back unless committed."""

    def __init__(self, session_factory: Callable[[], AsyncSession] = async_session_factory):
        self.session_factory = session_factory

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self.session_factory()
        self.trips = SqlTripRepository(self.session)
        self.bookings = SqlBookingRepository(self.session)
        self.cancellations = SqlCancellationLog(self.session)
        self.suspensions = SqlSuspensionRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.session.rollback()
        finally:
            await self.session.close()
        if isinstance(exc, SQLAlchemyError):
            raise PersistenceError(str(exc)) from exc

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    async def rollback(self) -> None:
        await self.session.rollback()
