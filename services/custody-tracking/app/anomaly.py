"""Travel-time red flag between pickup and arrival."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class TravelTimeCheck:
    elapsed_minutes: float
    threshold_minutes: float

    @property
    def triggered(self) -> bool:
        return self.elapsed_minutes > self.threshold_minutes


def check_travel_time(
    pickup_at: datetime,
    arrival_at: datetime,
    expected_travel_minutes: int | None,
    *,
    multiplier: float,
    fallback_minutes: int,
) -> TravelTimeCheck:
    """Compare PICKUP -> ARRIVAL elapsed time against the allowed threshold.

    The threshold is ``expected_travel_minutes * multiplier``; tasks without an
    expected travel time use ``fallback_minutes``.
    """

    expected = expected_travel_minutes if expected_travel_minutes else fallback_minutes
    elapsed = (arrival_at - pickup_at).total_seconds() / 60
    return TravelTimeCheck(elapsed_minutes=elapsed, threshold_minutes=expected * multiplier)
