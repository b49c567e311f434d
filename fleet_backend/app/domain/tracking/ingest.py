"""
Location Ingest Service (Domain Logic).

Single entry point for position reports from both the REST fallback and the
WebSocket channel:

1. Validate the report (nothing is written for a malformed report)
2. Authorize the reporting driver for the vehicle
3. Resolve the history scope (ongoing trip or UTC day)
4. Persist snapshot and history together
5. Publish to the vehicle topic (only after a successful write)
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from fleet_backend.app.core.exceptions import (
    InsufficientPermissionsError, InvalidCoordinateError, TrackingValidationError
)
from fleet_backend.app.domain.tracking.broadcast_hub import RealtimeBroadcastHub
from fleet_backend.app.domain.tracking.position_store import PositionStore
from fleet_backend.app.domain.tracking.types import (
    HistoryScope, PositionSample, format_timestamp, to_utc_naive, utcnow
)
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.trip_enums import TripStatus
from fleet_backend.app.schemas.location import LocationUpdate
from fleet_backend.app.services.fleet_directory import FleetDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestAck:
    """Acknowledgement returned to the reporting device."""
    vehicle_id: int
    scope_key: str
    timestamp: datetime
    delivered: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "vehicleId": str(self.vehicle_id),
            "scopeKey": self.scope_key,
            "timestamp": format_timestamp(self.timestamp),
            "delivered": self.delivered,
        }


def validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> Tuple[float, float]:
    """
    Check presence and range of a coordinate pair.

    Raises:
        TrackingValidationError: latitude or longitude missing
        InvalidCoordinateError: out of range or not a finite number
    """
    if latitude is None or longitude is None:
        raise TrackingValidationError(
            "latitude and longitude are required",
            details={"latitude": latitude, "longitude": longitude},
            error_code="ERR_VALIDATION_REQUIRED"
        )
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise InvalidCoordinateError(latitude, longitude)
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise InvalidCoordinateError(latitude, longitude)
    return float(latitude), float(longitude)


def normalize_speed(speed: Optional[float]) -> float:
    """Missing speed is 0; negative speed is clamped to 0."""
    if speed is None:
        return 0.0
    if not math.isfinite(speed):
        raise TrackingValidationError(
            "speed must be a finite number",
            details={"speed": str(speed)},
            error_code="ERR_VALIDATION_SPEED"
        )
    return max(float(speed), 0.0)


class LocationIngestService:
    """
    Validate, authorize, persist and fan out position reports.

    Args:
        store: Durable snapshot/history store
        directory: Vehicle/driver/trip lookups for authorization and scoping
        hub: Broadcast hub for live subscribers
        clock: Receipt instant provider (naive UTC)
    """

    def __init__(
        self,
        store: PositionStore,
        directory: FleetDirectory,
        hub: RealtimeBroadcastHub,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._directory = directory
        self._hub = hub
        self._clock = clock

    async def report(
        self,
        principal: dict,
        report: LocationUpdate,
        origin: Optional[str] = None,
    ) -> IngestAck:
        """
        Ingest one position report.

        Args:
            principal: Decoded token payload ({user_id, role, sub})
            report: Device report
            origin: Observer id of the sending connection, excluded from the broadcast

        Returns:
            IngestAck with the scope written to and the number of observers queued

        Raises:
            TrackingValidationError: malformed report
            InsufficientPermissionsError: caller may not report for this vehicle
            StoreUnavailableError: write failed (retryable, nothing broadcast)
        """
        received_at = self._clock()

        # 1. Validate
        latitude, longitude = validate_coordinates(report.latitude, report.longitude)
        speed = normalize_speed(report.speed)
        timestamp = to_utc_naive(report.timestamp) if report.timestamp else received_at

        # 2. Authorize
        driver = await self._authorize(principal, report.vehicle_id)

        # 3. Resolve scope
        trip = await self._resolve_trip(report.vehicle_id, report.trip_id)
        if trip is not None:
            scope = HistoryScope.for_trip(report.vehicle_id, trip.id)
        else:
            scope = HistoryScope.for_day(report.vehicle_id, received_at.date())

        sample = PositionSample(
            vehicle_id=report.vehicle_id,
            latitude=latitude,
            longitude=longitude,
            speed=speed,
            timestamp=timestamp,
            driver_id=driver.id,
            trip_id=trip.id if trip else None,
        )

        # 4. Persist (raises StoreUnavailableError, nothing is published then)
        await self._store.record(scope, sample)

        # 5. Fan out
        delivered = self._hub.publish(
            report.vehicle_id,
            {"event": "receive_location", "data": sample.to_broadcast_event()},
            exclude_observer=origin,
        )

        logger.debug(
            "Ingested sample for vehicle %s into %s (%d observers)",
            report.vehicle_id, scope.key, delivered
        )
        return IngestAck(
            vehicle_id=report.vehicle_id,
            scope_key=scope.key,
            timestamp=timestamp,
            delivered=delivered,
        )

    async def _authorize(self, principal: dict, vehicle_id: int) -> Driver:
        if principal.get("role") != UserRole.DRIVER.value:
            raise InsufficientPermissionsError("Only drivers can report locations")

        user_id = principal.get("user_id")
        driver = await self._directory.get_driver_by_user(user_id) if user_id else None
        if driver is None:
            raise InsufficientPermissionsError("No driver profile for this user")

        vehicle = await self._directory.get_vehicle(vehicle_id)
        if vehicle is None or not vehicle.is_active:
            raise InsufficientPermissionsError(
                "Vehicle is not available for tracking",
                details={"vehicle_id": vehicle_id}
            )

        if driver.assigned_vehicle_id == vehicle_id:
            return driver

        trip = await self._directory.get_ongoing_trip(vehicle_id, driver_id=driver.id)
        if trip is None:
            logger.info("Driver %s rejected for vehicle %s", driver.id, vehicle_id)
            raise InsufficientPermissionsError(
                "You are not assigned to this vehicle",
                details={"vehicle_id": vehicle_id}
            )
        return driver

    async def _resolve_trip(self, vehicle_id: int, trip_id: Optional[int]) -> Optional[Trip]:
        """The reported trip if it is Ongoing on this vehicle, else None (day scope)."""
        if trip_id is None:
            return None
        trip = await self._directory.get_trip(trip_id)
        if trip is None or trip.vehicle_id != vehicle_id or trip.status != TripStatus.ONGOING:
            return None
        return trip
