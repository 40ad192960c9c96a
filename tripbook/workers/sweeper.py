"""
Background Expiration Worker
============================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 300 s) and calls
``ExpirationSweeper.run_sweep`` to reclaim seats from bookings that stayed
pending for more than ``STALE_BOOKING_HOURS``.

Concurrency safety
------------------
* **Redis distributed lock** keeps several API processes from sweeping at
  the same moment (duplicate work only; correctness does not depend on it).
* Each booking is cancelled through the booking state machine with a
  conditional status write, so an overlapping sweep or a user cancelling
  the same booking can never release its seats twice.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from tripbook.config import settings
from tripbook.infrastructure.locks import DistributedLock, LockNotAcquired
from tripbook.infrastructure.redis_client import get_redis
from tripbook.services.expiration import ExpirationSweeper, SweepResult

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweep_loop(sweeper: ExpirationSweeper) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(sweeper))
    logger.info(
        "Expiration worker started (interval=%ds, stale after %dh)",
        settings.sweep_interval_seconds,
        settings.stale_booking_hours,
    )


async def stop_sweep_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Expiration worker stopped")


async def run_sweep_cycle(sweeper: ExpirationSweeper) -> Optional[SweepResult]:
    """Run one sweep under the distributed lock.

    Returns None when another worker holds the lock.
    """
    redis = await get_redis()
    lock = DistributedLock(redis, "expiration_sweeper", ttl_seconds=120)

    try:
        async with lock:
            return await sweeper.run_sweep(
                stale_after=timedelta(hours=settings.stale_booking_hours)
            )
    except LockNotAcquired:
        logger.debug("Lock held by another worker - skipping sweep")
        return None


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(sweeper: ExpirationSweeper) -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(sweeper)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle
