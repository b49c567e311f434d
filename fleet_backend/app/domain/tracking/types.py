"""
Value types shared by the live tracking pipeline.

Timestamps are handled as naive UTC datetimes throughout, matching how the
models are written; wire payloads carry ISO-8601 strings with a Z suffix.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple

# (latitude, longitude) in degrees
Coordinate = Tuple[float, float]


def utcnow() -> datetime:
    """Current instant as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_utc_naive(value).isoformat() + "Z"


@dataclass(frozen=True)
class PositionSample:
    """One accepted GPS reading. Immutable once created."""
    vehicle_id: int
    latitude: float
    longitude: float
    speed: float
    timestamp: datetime
    driver_id: Optional[int] = None
    trip_id: Optional[int] = None

    @property
    def coordinate(self) -> Coordinate:
        return (self.latitude, self.longitude)

    def to_location_payload(self) -> Dict[str, Any]:
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "timestamp": format_timestamp(self.timestamp),
            "speed": self.speed,
        }

    def to_broadcast_event(self) -> Dict[str, Any]:
        """Wire shape delivered to every subscriber of the vehicle topic."""
        return {
            "vehicleId": str(self.vehicle_id),
            "location": self.to_location_payload(),
        }


@dataclass(frozen=True)
class LiveSnapshot:
    """Last known position of a vehicle."""
    vehicle_id: int
    latitude: float
    longitude: float
    speed: float
    timestamp: datetime
    reporting_driver_id: Optional[int] = None

    @classmethod
    def from_sample(cls, sample: PositionSample) -> "LiveSnapshot":
        return cls(
            vehicle_id=sample.vehicle_id,
            latitude=sample.latitude,
            longitude=sample.longitude,
            speed=sample.speed,
            timestamp=sample.timestamp,
            reporting_driver_id=sample.driver_id,
        )

    def as_sample(self) -> PositionSample:
        return PositionSample(
            vehicle_id=self.vehicle_id,
            latitude=self.latitude,
            longitude=self.longitude,
            speed=self.speed,
            timestamp=self.timestamp,
            driver_id=self.reporting_driver_id,
        )


@dataclass(frozen=True)
class HistoryScope:
    """
    Partition of a vehicle's route history.

    Either bound to a trip, or to the UTC day the history was first written.
    """
    vehicle_id: int
    trip_id: Optional[int] = None
    day: Optional[date] = None

    @classmethod
    def for_trip(cls, vehicle_id: int, trip_id: int) -> "HistoryScope":
        return cls(vehicle_id=vehicle_id, trip_id=trip_id)

    @classmethod
    def for_day(cls, vehicle_id: int, day: date) -> "HistoryScope":
        return cls(vehicle_id=vehicle_id, day=day)

    @property
    def key(self) -> str:
        if self.trip_id is not None:
            return trip_scope_key(self.trip_id)
        return day_scope_key(self.vehicle_id, self.day)


def trip_scope_key(trip_id: int) -> str:
    return f"trip:{trip_id}"


def day_scope_key(vehicle_id: int, day: date) -> str:
    return f"day:{vehicle_id}:{day.isoformat()}"


@dataclass(frozen=True)
class TimeRange:
    """Inclusive [start, end] window on sample timestamps."""
    start: datetime
    end: datetime

    def __post_init__(self):
        start = to_utc_naive(self.start)
        end = to_utc_naive(self.end)
        if start > end:
            raise ValueError("Time range start must not be after end")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    def contains(self, value: datetime) -> bool:
        return self.start <= to_utc_naive(value) <= self.end
