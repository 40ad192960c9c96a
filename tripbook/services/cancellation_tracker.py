"""
Cancellation & Suspension Tracker
=================================

Appends cancellation events to the log, counts them over the trailing
window and raises the per-user suspension flag once the threshold is hit.
The tracker never clears a suspension on its own; ``reactivate`` is the
administrative action for that.

All methods run inside the caller's unit of work so that a cancellation,
its log entry and the resulting suspension commit (or roll back) together.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from tripbook.domain.entities import CancellationEvent, DomainEvent, SuspensionState
from tripbook.domain.enums import CancellationAttribution, UserRole, WarningLevel
from tripbook.domain.ports import UnitOfWork
from tripbook.domain.suspension import SUSPENSION_REASON, SuspensionPolicy

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SuspensionVerdict:
    user_id: int
    role: UserRole
    count: int
    level: WarningLevel
    newly_suspended: bool


class CancellationTracker:
    def __init__(
        self,
        uow: UnitOfWork,
        policy: SuspensionPolicy,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.uow = uow
        self.policy = policy
        self.clock = clock
        self.events: list[DomainEvent] = []

    async def record_cancellation(
        self,
        user_id: int,
        role: UserRole,
        booking_id: Optional[int],
        attribution: CancellationAttribution,
        *,
        trip_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> CancellationEvent:
        event = CancellationEvent(
            user_id=user_id,
            role=role,
            attribution=attribution,
            occurred_at=self.clock(),
            booking_id=booking_id,
            trip_id=trip_id,
            reason=reason,
        )
        return await self.uow.cancellations.append(event)

    async def count_cancellations(
        self, user_id: int, role: UserRole, window_days: Optional[int] = None
    ) -> int:
        state = await self.uow.suspensions.get(user_id)
        since = self.policy.window_start(
            self.clock(),
            window_days=window_days,
            reset_at=state.cancellations_reset_at if state else None,
        )
        return await self.uow.cancellations.count(
            user_id, role, since, self.policy.counted_attributions
        )

    async def evaluate_suspension(self, user_id: int, role: UserRole) -> SuspensionVerdict:
        # Locked before counting so concurrent cancellations see each other
        state = await self.uow.suspensions.lock(user_id)
        count = await self.count_cancellations(user_id, role)
        level = self.policy.warning_level(count)

        newly_suspended = False
        if self.policy.should_suspend(count) and not state.is_suspended:
            state.is_suspended = True
            state.reason = SUSPENSION_REASON
            state.suspended_at = self.clock()
            await self.uow.suspensions.save(state)
            newly_suspended = True
            logger.info(
                "Suspended %s %s after %d cancellations in %d days",
                role.value, user_id, count, self.policy.window_days,
            )
            self._emit(
                "user.suspended",
                user_id=user_id,
                role=role.value,
                reason=SUSPENSION_REASON,
                cancellations=count,
            )
        elif level in (WarningLevel.INFO, WarningLevel.SEVERE):
            logger.warning(
                "Cancellation warning (%s) for %s %s: %d in window",
                level.value, role.value, user_id, count,
            )
            self._emit(
                "user.cancellation_warning",
                user_id=user_id,
                role=role.value,
                level=level.value,
                cancellations=count,
            )

        if state.is_suspended:
            level = WarningLevel.SUSPENDED
        return SuspensionVerdict(user_id, role, count, level, newly_suspended)

    async def warning_level(self, user_id: int, role: UserRole) -> WarningLevel:
        if await self.is_user_suspended(user_id):
            return WarningLevel.SUSPENDED
        return self.policy.warning_level(await self.count_cancellations(user_id, role))

    async def is_user_suspended(self, user_id: int) -> bool:
        state = await self.uow.suspensions.get(user_id)
        return bool(state and state.is_suspended)

    async def suspension_state(self, user_id: int) -> SuspensionState:
        return await self.uow.suspensions.get(user_id) or SuspensionState(user_id=user_id)

    async def history(self, user_id: int, limit: int = 50) -> list[CancellationEvent]:
        return await self.uow.cancellations.history(user_id, limit)

    async def statistics(self, days: int = 30) -> dict:
        now = self.clock()
        events = await self.uow.cancellations.since(now - timedelta(days=days))
        window_start = now - timedelta(days=self.policy.window_days)
        by_role = Counter(e.role.value for e in events)
        by_attribution = Counter(e.attribution.value for e in events)
        return {
            "days": days,
            "total": len(events),
            "by_role": {r.value: by_role.get(r.value, 0) for r in UserRole},
            "by_attribution": {
                a.value: by_attribution.get(a.value, 0) for a in CancellationAttribution
            },
            "trip_cancellations": sum(1 for e in events if e.booking_id is None),
            "booking_cancellations": sum(1 for e in events if e.booking_id is not None),
            "last_window": sum(1 for e in events if e.occurred_at >= window_start),
        }

    async def reactivate(
        self, user_id: int, reason: str, reset_cancellations: bool = False
    ) -> SuspensionState:
        """Administrative un-suspension."""
        now = self.clock()
        state = await self.uow.suspensions.lock(user_id)
        was_suspended = state.is_suspended
        state.is_suspended = False
        state.reactivated_at = now
        state.reason = reason
        if reset_cancellations:
            state.cancellations_reset_at = now
        state = await self.uow.suspensions.save(state)
        if was_suspended:
            logger.info("Reactivated user %s (%s)", user_id, reason)
            self._emit("user.reactivated", user_id=user_id, reason=reason)
        return state

    def _emit(self, name: str, **payload) -> None:
        self.events.append(DomainEvent(name=name, occurred_at=self.clock(), payload=payload))
