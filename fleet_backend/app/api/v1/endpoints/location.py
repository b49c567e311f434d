"""
Live Location API Endpoints.

Drivers report positions over REST when the WebSocket is unavailable.
Fleet Owners read snapshots, route histories and the remaining-route overlay.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from fleet_backend.app.core.dependencies import get_current_user, get_tracking
from fleet_backend.app.core.exceptions import RoutingUnavailableError, TrackingValidationError
from fleet_backend.app.core.guards import OwnershipGuard, require_role
from fleet_backend.app.domain.tracking.components import TrackingComponents
from fleet_backend.app.domain.tracking.route_projection import RouteProjectionEngine
from fleet_backend.app.domain.tracking.types import (
    PositionSample, TimeRange, format_timestamp, trip_scope_key, utcnow
)
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.app.schemas.location import (
    LiveLocationResponse, LocationPoint, LocationUpdate,
    RemainingRouteResponse, RouteHistoryResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/location", tags=["Live Location"])
ownership_guard = OwnershipGuard()

VIEWER_ROLES = [UserRole.FLEET_OWNER, UserRole.ADMIN]


def _points(samples: List[PositionSample]) -> List[LocationPoint]:
    return [LocationPoint(**s.to_location_payload()) for s in samples]


def _time_range(start: Optional[datetime], end: Optional[datetime]) -> Optional[TimeRange]:
    """Build an inclusive range from optional query bounds; None when both are absent."""
    if start is None and end is None:
        return None
    try:
        return TimeRange(start or datetime.min, end or datetime.max)
    except ValueError as e:
        raise TrackingValidationError(str(e), error_code="ERR_VALIDATION_RANGE")


async def _get_owned_vehicle(tracking: TrackingComponents, vehicle_id: int, current_user: dict) -> Vehicle:
    vehicle = await tracking.directory.get_vehicle(vehicle_id)
    if not vehicle:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Vehicle not found"
        )
    ownership_guard.enforce(vehicle.owner_id, current_user, "vehicle")
    return vehicle


async def _get_owned_trip(tracking: TrackingComponents, trip_id: int, current_user: dict) -> Trip:
    trip = await tracking.directory.get_trip(trip_id)
    if not trip:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Trip not found"
        )
    await _get_owned_vehicle(tracking, trip.vehicle_id, current_user)
    return trip


@router.post("/update")
async def update_location(
    report: LocationUpdate = Body(...),
    current_user: dict = Depends(get_current_user),
    tracking: TrackingComponents = Depends(get_tracking)
):
    """
    Report the current position of a vehicle (Driver only).

    Same pipeline as the WebSocket send_location event: validate, authorize,
    persist snapshot and history, then broadcast to live viewers.
    """
    ack = await tracking.ingest.report(current_user, report)
    return {"message": "Location updated", "data": ack.to_payload()}


@router.get("/live/{vehicle_id}", response_model=LiveLocationResponse)
async def get_live_location(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    current_user: dict = Depends(require_role(VIEWER_ROLES)),
    tracking: TrackingComponents = Depends(get_tracking)
):
    """
    Last known position of a vehicle with its tracking state.

    A vehicle that never reported returns state NEVER and no location.
    """
    vehicle = await _get_owned_vehicle(tracking, vehicle_id, current_user)
    snapshot = await tracking.store.get_snapshot(vehicle_id)

    now = utcnow()
    last_sample_at = snapshot.timestamp if snapshot else None
    return LiveLocationResponse(
        vehicle_id=vehicle.id,
        registration_number=vehicle.registration_number,
        state=tracking.staleness.classify(last_sample_at, now).value,
        last_update=format_timestamp(last_sample_at),
        last_update_label=tracking.staleness.describe_age(last_sample_at, now),
        location=LocationPoint(**snapshot.as_sample().to_location_payload()) if snapshot else None
    )


@router.get("/history/trips/{trip_id}", response_model=RouteHistoryResponse)
async def get_trip_history(
    trip_id: int = Path(..., description="Trip ID"),
    start: Optional[datetime] = Query(None, description="Inclusive lower bound on sample time"),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound on sample time"),
    current_user: dict = Depends(require_role(VIEWER_ROLES)),
    tracking: TrackingComponents = Depends(get_tracking)
):
    """
    Route history of a trip.

    Without bounds points come back in arrival order; with bounds they are
    filtered and sorted by sample time.
    """
    time_range = _time_range(start, end)
    trip = await _get_owned_trip(tracking, trip_id, current_user)

    scope_key = trip_scope_key(trip.id)
    samples = await tracking.store.get_history(scope_key, time_range)
    return RouteHistoryResponse(
        vehicle_id=trip.vehicle_id,
        trip_id=trip.id,
        scope_key=scope_key,
        points=_points(samples),
        count=len(samples)
    )


@router.get("/history/vehicles/{vehicle_id}", response_model=RouteHistoryResponse)
async def get_vehicle_history(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    start: datetime = Query(..., description="Inclusive lower bound on sample time"),
    end: Optional[datetime] = Query(None, description="Inclusive upper bound, defaults to now"),
    current_user: dict = Depends(require_role(VIEWER_ROLES)),
    tracking: TrackingComponents = Depends(get_tracking)
):
    """
    Every recorded point of a vehicle in a time window, across trip and day scopes.
    """
    time_range = _time_range(start, end or utcnow())
    await _get_owned_vehicle(tracking, vehicle_id, current_user)

    samples = await tracking.store.get_history_across_scopes(vehicle_id, time_range)
    return RouteHistoryResponse(
        vehicle_id=vehicle_id,
        points=_points(samples),
        count=len(samples)
    )


@router.get("/trips/{trip_id}/remaining-route", response_model=RemainingRouteResponse)
async def get_remaining_route(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(VIEWER_ROLES)),
    tracking: TrackingComponents = Depends(get_tracking)
):
    """
    Remaining path of a trip from the vehicle's live position.

    When the reference path cannot be fetched the response is marked
    unavailable and carries only the traveled history.
    """
    trip = await _get_owned_trip(tracking, trip_id, current_user)

    traveled = await tracking.store.get_history(trip_scope_key(trip.id))
    snapshot = await tracking.store.get_snapshot(trip.vehicle_id)
    current = snapshot.as_sample().coordinate if snapshot else None

    response = RemainingRouteResponse(
        trip_id=trip.id,
        vehicle_id=trip.vehicle_id,
        available=False,
        current=list(current) if current else None,
        traveled=_points(traveled)
    )

    try:
        reference_path = await tracking.routing.fetch_trip_path(trip)
    except RoutingUnavailableError as e:
        logger.info("Remaining route for trip %s unavailable: %s", trip.id, e.details.get("reason"))
        response.reason = e.details.get("reason") or e.message
        return response

    engine = RouteProjectionEngine(reference_path)
    remaining = engine.update(current) if current else engine.reference_path

    response.available = True
    response.reference_path = [list(c) for c in reference_path]
    response.remaining_path = [list(c) for c in remaining]
    return response
