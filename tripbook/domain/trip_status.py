"""Trip status derivation.

A trip's displayed status is a pure function of its seat counts plus the
driver's terminal action; it is recomputed after every ledger mutation.
"""

from __future__ import annotations

from typing import Optional

from .enums import TERMINAL_TRIP_STATUSES, TripStatus


def derive_trip_status(
    available_seats: int,
    total_seats: int,
    terminal_action: Optional[TripStatus] = None,
) -> TripStatus:
    """Return the status for a trip with the given seat counts.

    A completed/cancelled override from the driver wins regardless of seats.
    """
    if terminal_action is not None:
        if terminal_action not in TERMINAL_TRIP_STATUSES:
            raise ValueError(f"{terminal_action} is not a terminal trip status")
        return terminal_action
    if not 0 <= available_seats <= total_seats:
        raise ValueError(
            f"available_seats={available_seats} outside 0..{total_seats}"
        )
    if available_seats == 0:
        return TripStatus.FULLY_BOOKED
    return TripStatus.SCHEDULED
