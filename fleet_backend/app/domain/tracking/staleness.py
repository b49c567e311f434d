"""
Tracking staleness classification.

Decides whether a vehicle is actively reporting from the age of its last
sample. The LIVE/STALE boundary drives the active vs inactive grouping on
the fleet dashboard and the state sent to late subscribers.
"""

import enum
from datetime import datetime, timedelta
from typing import Callable, Optional

from fleet_backend.app.domain.tracking.types import to_utc_naive, utcnow


class TrackingState(str, enum.Enum):
    """Tracking state of a vehicle."""
    LIVE = "LIVE"  # Last sample younger than the threshold
    STALE = "STALE"  # Last sample at or beyond the threshold
    NEVER = "NEVER"  # No sample has ever been stored


class StalenessEvaluator:
    """
    Pure classifier over (last sample timestamp, now).

    Args:
        live_threshold: age below which a vehicle is LIVE (default 5 minutes)
        clock: "now" provider, used when callers do not pass one
    """

    def __init__(
        self,
        live_threshold: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.live_threshold = live_threshold
        self._clock = clock

    def classify(self, last_sample_at: Optional[datetime], now: Optional[datetime] = None) -> TrackingState:
        if last_sample_at is None:
            return TrackingState.NEVER
        age = self._age(last_sample_at, now)
        # age exactly at the threshold is STALE
        if age < self.live_threshold:
            return TrackingState.LIVE
        return TrackingState.STALE

    def is_live(self, last_sample_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        return self.classify(last_sample_at, now) == TrackingState.LIVE

    def describe_age(self, last_sample_at: Optional[datetime], now: Optional[datetime] = None) -> str:
        """Human readable "last update" label for dashboards."""
        if last_sample_at is None:
            return "Never"

        minutes = int(self._age(last_sample_at, now).total_seconds() // 60)
        if minutes < 1:
            return "Just now"
        if minutes < 60:
            return f"{minutes}m ago"
        if minutes < 1440:
            return f"{minutes // 60}h ago"
        return f"{minutes // 1440}d ago"

    def _age(self, last_sample_at: datetime, now: Optional[datetime]) -> timedelta:
        current = to_utc_naive(now) if now is not None else self._clock()
        return current - to_utc_naive(last_sample_at)
