"""
Persistence and notification ports.

The engine depends only on these interfaces.  Every mutation of shared
state goes through one of the two conditional-write primitives:

* ``TripRepository.compare_and_set``            -- version-checked update
* ``BookingRepository.compare_and_set_status``  -- status-checked update

Both return ``False`` instead of raising when the precondition no longer
holds, so callers decide whether that is a conflict, a no-op or a
rejection.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from .entities import Booking, CancellationEvent, DomainEvent, SuspensionState, Trip
from .enums import BookingStatus, CancellationAttribution, TripStatus, UserRole


class TripRepository(ABC):
    @abstractmethod
    async def add(self, trip: Trip) -> Trip: ...

    @abstractmethod
    async def get(self, trip_id: int) -> Optional[Trip]: ...

    @abstractmethod
    async def lock(self, trip_id: int) -> Optional[Trip]:
        """Read the trip and hold its row lock until the unit of work ends."""

    @abstractmethod
    async def compare_and_set(
        self,
        trip_id: int,
        expected_version: int,
        *,
        available_seats: int,
        status: TripStatus,
        at: datetime,
    ) -> bool: ...


class BookingRepository(ABC):
    @abstractmethod
    async def add(
        self, booking: Booking, idempotency_key: Optional[str] = None
    ) -> Booking: ...

    @abstractmethod
    async def get(self, booking_id: int) -> Optional[Booking]: ...

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Booking]: ...

    @abstractmethod
    async def compare_and_set_status(
        self,
        booking_id: int,
        from_statuses: Iterable[BookingStatus],
        to_status: BookingStatus,
        *,
        at: datetime,
        reason: Optional[str] = None,
    ) -> bool: ...

    @abstractmethod
    async def list_for_trip(
        self, trip_id: int, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[Booking]: ...

    @abstractmethod
    async def seats_held(self, trip_id: int) -> int:
        """Sum of seats over bookings that still consume capacity."""

    @abstractmethod
    async def stale_pending_ids(self, created_before: datetime) -> list[int]: ...


class CancellationLog(ABC):
    @abstractmethod
    async def append(self, event: CancellationEvent) -> CancellationEvent: ...

    @abstractmethod
    async def count(
        self,
        user_id: int,
        role: UserRole,
        since: datetime,
        attributions: Iterable[CancellationAttribution],
    ) -> int: ...

    @abstractmethod
    async def history(self, user_id: int, limit: int = 50) -> list[CancellationEvent]: ...

    @abstractmethod
    async def since(self, since: datetime) -> list[CancellationEvent]: ...

    @abstractmethod
    async def purge_before(self, cutoff: datetime) -> int: ...


class SuspensionRepository(ABC):
    @abstractmethod
    async def get(self, user_id: int) -> Optional[SuspensionState]: ...

    @abstractmethod
    async def lock(self, user_id: int) -> SuspensionState:
        """Create the user's row if missing, then hold its row lock.

        Serialises every suspension decision for one user.
        """

    @abstractmethod
    async def save(self, state: SuspensionState) -> SuspensionState: ...


class UnitOfWork(ABC):
    """One atomic transaction against the authoritative store.

    Leaving the block without ``commit()`` (or with an exception) rolls back.
    """

    trips: TripRepository
    bookings: BookingRepository
    cancellations: CancellationLog
    suspensions: SuspensionRepository

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rollback()


class EventPublisher(ABC):
    """Fire-and-forget notification dispatch; never awaited by the engine."""

    @abstractmethod
    def publish(self, event: DomainEvent) -> None: ...
