"""
Live location schemas.

LocationUpdate mirrors the device wire shape (camelCase). Coordinate ranges
are checked by the ingest service so REST and WebSocket reports are rejected
with the same error.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

# Largest id a 32-bit INTEGER primary key can hold
MAX_ID = 2**31 - 1


class LocationUpdate(BaseModel):
    """Position report sent by a driver device."""
    vehicle_id: int = Field(..., alias="vehicleId", gt=0, le=MAX_ID)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timestamp: Optional[datetime] = None
    speed: Optional[float] = None  # km/h
    trip_id: Optional[int] = Field(None, alias="tripId", le=MAX_ID)

    class Config:
        populate_by_name = True


class LocationPoint(BaseModel):
    """One point as rendered on a map."""
    lat: float
    lng: float
    timestamp: Optional[str]
    speed: float


class LiveLocationResponse(BaseModel):
    """Last known position of a vehicle with its tracking state."""
    vehicle_id: int
    registration_number: str
    state: str  # LIVE, STALE, NEVER
    last_update: Optional[str]
    last_update_label: str
    location: Optional[LocationPoint] = None


class RouteHistoryResponse(BaseModel):
    """Route history points, arrival order or chronological when ranged."""
    vehicle_id: int
    trip_id: Optional[int] = None
    scope_key: Optional[str] = None
    points: List[LocationPoint]
    count: int


class RemainingRouteResponse(BaseModel):
    """Remaining-path overlay of an ongoing trip."""
    trip_id: int
    vehicle_id: int
    available: bool
    reason: Optional[str] = None
    current: Optional[List[float]] = None
    reference_path: List[List[float]] = []
    remaining_path: List[List[float]] = []
    traveled: List[LocationPoint] = []


class VehicleTrackingStatus(BaseModel):
    """Dashboard row for one vehicle."""
    vehicle_id: int
    registration_number: str
    model: Optional[str]
    is_active: bool
    state: str
    last_update: Optional[str]
    last_update_label: str
    location: Optional[LocationPoint] = None


class FleetTrackingStatusResponse(BaseModel):
    """Vehicles grouped by whether they are actively reporting."""
    active: List[VehicleTrackingStatus]
    inactive: List[VehicleTrackingStatus]
    total_vehicles: int
    active_count: int
