"""
Catch-up payload for late subscribers.

A viewer joining a vehicle topic first receives the last known position,
the recent route of the active scope and the tracking state, then the live
stream.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List

from fleet_backend.app.domain.tracking.position_store import PositionStore
from fleet_backend.app.domain.tracking.staleness import StalenessEvaluator
from fleet_backend.app.domain.tracking.types import (
    day_scope_key, format_timestamp, trip_scope_key, utcnow
)
from fleet_backend.app.services.fleet_directory import FleetDirectory


class CatchupBuilder:
    """
    Builds the ordered catch-up messages for one vehicle.

    Args:
        store: Position store to read snapshot and history from
        directory: Used to find the vehicle's ongoing trip
        staleness: Classifies the snapshot age
        history_limit: Maximum number of history points delivered
    """

    def __init__(
        self,
        store: PositionStore,
        directory: FleetDirectory,
        staleness: StalenessEvaluator,
        history_limit: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._directory = directory
        self._staleness = staleness
        self._history_limit = history_limit
        self._clock = clock

    async def active_scope_key(self, vehicle_id: int) -> str:
        """Ongoing trip scope if it already holds points, otherwise today's scope."""
        trip = await self._directory.get_ongoing_trip(vehicle_id)
        if trip is not None:
            key = trip_scope_key(trip.id)
            if await self._store.count_history(key) > 0:
                return key
        return day_scope_key(vehicle_id, self._clock().date())

    async def __call__(self, vehicle_id: int) -> List[Dict[str, Any]]:
        now = self._clock()
        messages: List[Dict[str, Any]] = []

        snapshot = await self._store.get_snapshot(vehicle_id)
        if snapshot is not None:
            messages.append({
                "event": "receive_location",
                "data": snapshot.as_sample().to_broadcast_event(),
            })

        scope_key = await self.active_scope_key(vehicle_id)
        points = await self._store.get_recent_history(scope_key, self._history_limit)
        messages.append({
            "event": "receive_route_history",
            "data": {
                "vehicleId": str(vehicle_id),
                "scopeKey": scope_key,
                "points": [p.to_location_payload() for p in points],
            },
        })

        last_sample_at = snapshot.timestamp if snapshot else None
        messages.append({
            "event": "tracking_state",
            "data": {
                "vehicleId": str(vehicle_id),
                "state": self._staleness.classify(last_sample_at, now).value,
                "lastUpdate": format_timestamp(last_sample_at),
                "lastUpdateLabel": self._staleness.describe_age(last_sample_at, now),
            },
        })
        return messages
