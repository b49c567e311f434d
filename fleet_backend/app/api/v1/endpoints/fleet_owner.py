"""
Fleet Owner Tracking Dashboard API Endpoints.

Groups a fleet's vehicles into actively reporting and inactive lists.
"""

from fastapi import APIRouter, Depends

from fleet_backend.app.core.dependencies import get_tracking
from fleet_backend.app.core.guards import OwnershipGuard, require_role
from fleet_backend.app.domain.tracking.components import TrackingComponents
from fleet_backend.app.domain.tracking.staleness import TrackingState
from fleet_backend.app.domain.tracking.types import format_timestamp, utcnow
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.schemas.location import (
    FleetTrackingStatusResponse, LocationPoint, VehicleTrackingStatus
)

router = APIRouter(prefix="/fleet-owner", tags=["Fleet Owner - Live Tracking"])
ownership_guard = OwnershipGuard()


@router.get("/vehicles/tracking-status", response_model=FleetTrackingStatusResponse)
async def get_tracking_status(
    current_user: dict = Depends(require_role([UserRole.FLEET_OWNER, UserRole.ADMIN])),
    tracking: TrackingComponents = Depends(get_tracking)
):
    """
    Tracking state of every vehicle the caller can see.

    A vehicle is active when its last sample is younger than the live
    threshold; stale and never-reported vehicles are inactive.
    """
    owner_filter = ownership_guard.filter_by_ownership(current_user)
    vehicles = await tracking.directory.list_vehicles(owner_id=owner_filter)
    snapshots = await tracking.store.get_snapshots(v.id for v in vehicles)

    now = utcnow()
    active, inactive = [], []
    for vehicle in vehicles:
        snapshot = snapshots.get(vehicle.id)
        last_sample_at = snapshot.timestamp if snapshot else None
        state = tracking.staleness.classify(last_sample_at, now)

        row = VehicleTrackingStatus(
            vehicle_id=vehicle.id,
            registration_number=vehicle.registration_number,
            model=vehicle.model,
            is_active=vehicle.is_active,
            state=state.value,
            last_update=format_timestamp(last_sample_at),
            last_update_label=tracking.staleness.describe_age(last_sample_at, now),
            location=LocationPoint(**snapshot.as_sample().to_location_payload()) if snapshot else None
        )
        (active if state == TrackingState.LIVE else inactive).append(row)

    return FleetTrackingStatusResponse(
        active=active,
        inactive=inactive,
        total_vehicles=len(vehicles),
        active_count=len(active)
    )
