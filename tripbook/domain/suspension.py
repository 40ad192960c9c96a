"""
Cancellation Suspension Policy
==============================

Rolling window
--------------
Only cancellations inside the trailing ``window_days`` (default 15) count.
If an administrator reset the user's cancellations, the window starts at
the reset instead when that is more recent.

Thresholds
----------
* 1 cancellation  -> informational warning
* 2 cancellations -> severe warning
* >= 3            -> suspension ("exceeded cancellation threshold")

Attribution
-----------
``system-expired`` cancellations (stale bookings reclaimed by the sweep)
are always logged, but only count toward the threshold when
``count_system_expired`` is enabled.  By default they do not: the user did
not act, the booking simply was never confirmed.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from .enums import CancellationAttribution, WarningLevel

SUSPENSION_REASON = "exceeded cancellation threshold"


class SuspensionPolicy:
    def __init__(
        self,
        window_days: int = 15,
        threshold: int = 3,
        count_system_expired: bool = False,
    ):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.window_days = window_days
        self.threshold = threshold
        self.count_system_expired = count_system_expired

    @property
    def counted_attributions(self) -> set[CancellationAttribution]:
        counted = {CancellationAttribution.USER_INITIATED}
        if self.count_system_expired:
            counted.add(CancellationAttribution.SYSTEM_EXPIRED)
        return counted

    def window_start(
        self,
        now: datetime,
        window_days: Optional[int] = None,
        reset_at: Optional[datetime] = None,
    ) -> datetime:
        days = self.window_days if window_days is None else window_days
        start = now - timedelta(days=days)
        if reset_at is not None and reset_at > start:
            return reset_at
        return start

    def warning_level(self, count: int) -> WarningLevel:
        if count >= self.threshold:
            return WarningLevel.SUSPENDED
        if count == self.threshold - 1 and count > 0:
            return WarningLevel.SEVERE
        if count > 0:
            return WarningLevel.INFO
        return WarningLevel.NONE

    def should_suspend(self, count: int) -> bool:
        return count >= self.threshold
