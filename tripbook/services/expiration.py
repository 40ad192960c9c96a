"""
Expiration Sweeper
==================

Reclaims seats held by bookings that stayed ``pending`` for longer than
``stale_after`` (default 24 h).

* Every stale booking goes through ``BookingService.expire_booking`` -- the
  same state-machine / ledger path as a user cancellation, attributed as
  ``system-expired``.
* Each booking runs in its own transaction; a failure is recorded in
  ``errors`` and the sweep moves on (partial-failure semantics).
* Safe to overlap with itself or with live cancellations: a booking that
  was confirmed or cancelled in the meantime is simply skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from tripbook.domain.errors import TripBookingError
from tripbook.domain.ports import UnitOfWork
from tripbook.services.booking_lifecycle import BookingService

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepResult:
    checked_before: datetime
    cancelled_count: int = 0
    cancelled_booking_ids: list[int] = field(default_factory=list)
    skipped_count: int = 0
    purged_events: int = 0
    errors: list[str] = field(default_factory=list)


class ExpirationSweeper:
    def __init__(
        self,
        service: BookingService,
        uow_factory: Callable[[], UnitOfWork],
        retention: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.service = service
        self.uow_factory = uow_factory
        self.retention = retention
        self.clock = clock

    async def run_sweep(self, stale_after: timedelta = DEFAULT_STALE_AFTER) -> SweepResult:
        cutoff = self.clock() - stale_after
        result = SweepResult(checked_before=cutoff)

        async with self.uow_factory() as uow:
            stale_ids = await uow.bookings.stale_pending_ids(cutoff)

        for booking_id in stale_ids:
            try:
                booking = await self.service.expire_booking(booking_id)
            except TripBookingError as exc:
                logger.warning("Sweep failed for booking %s: %s", booking_id, exc)
                result.errors.append(f"Booking {booking_id}: {exc}")
                continue
            except Exception as exc:
                logger.exception("Unexpected sweep failure for booking %s", booking_id)
                result.errors.append(f"Booking {booking_id}: {exc!r}")
                continue

            if booking is None:
                result.skipped_count += 1
            else:
                result.cancelled_count += 1
                result.cancelled_booking_ids.append(booking_id)

        if self.retention is not None:
            try:
                result.purged_events = await self._purge_old_events()
            except TripBookingError as exc:
                logger.warning("Cancellation log purge failed: %s", exc)
                result.errors.append(f"Purge: {exc}")

        if stale_ids:
            logger.info(
                "Sweep: %d expired, %d skipped, %d error(s) (cutoff %s)",
                result.cancelled_count, result.skipped_count,
                len(result.errors), cutoff.isoformat(),
            )
        return result

    async def _purge_old_events(self) -> int:
        cutoff = self.clock() - self.retention
        async with self.uow_factory() as uow:
            purged = await uow.cancellations.purge_before(cutoff)
            await uow.commit()
        if purged:
            logger.info("Purged %d cancellation event(s) older than %s", purged, cutoff)
        return purged
