"""
Driver Trip Execution API Endpoints.

Drivers start and end trips. While a trip is Ongoing, position reports
carrying its id are recorded into the trip's route history.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from fleet_backend.app.db.session import get_db
from fleet_backend.app.domain.tracking.types import trip_scope_key, utcnow
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.app.models.trip_enums import TripStatus, DriverStatus
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.schemas.trip_execution import (
    TripStartRequest, TripEndRequest, MileageUpdateRequest, TripResponse
)
from fleet_backend.app.core.guards import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/driver", tags=["Driver - Trip Execution"])


def _trip_response(trip: Trip) -> TripResponse:
    return TripResponse(
        id=trip.id,
        driver_id=trip.driver_id,
        vehicle_id=trip.vehicle_id,
        status=trip.status.value,
        start_location=trip.start_location,
        start_lat=trip.start_lat,
        start_lng=trip.start_lng,
        end_location=trip.end_location,
        end_lat=trip.end_lat,
        end_lng=trip.end_lng,
        start_mileage=trip.start_mileage,
        end_mileage=trip.end_mileage,
        distance=trip.distance or 0,
        fuel_consumed=trip.fuel_consumed,
        purpose=trip.purpose,
        start_time=trip.start_time,
        end_time=trip.end_time,
        history_scope=trip_scope_key(trip.id)
    )


async def _get_driver(db: AsyncSession, current_user: dict) -> Driver:
    result = await db.execute(
        select(Driver).where(Driver.user_id == current_user["user_id"])
    )
    driver = result.scalar_one_or_none()

    if not driver:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No driver profile for this user"
        )
    return driver


async def _get_driver_trip(db: AsyncSession, trip_id: int, driver: Driver) -> Trip:
    result = await db.execute(
        select(Trip).where(Trip.id == trip_id)
    )
    trip = result.scalar_one_or_none()

    if not trip:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Trip not found"
        )

    if trip.driver_id != driver.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This trip is not assigned to you"
        )
    return trip


def _check_mileage(trip: Trip) -> None:
    if trip.start_mileage is not None and trip.end_mileage is not None:
        if trip.end_mileage < trip.start_mileage:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="End mileage cannot be lower than start mileage"
            )


@router.post("/trips/start", status_code=status.HTTP_201_CREATED, response_model=TripResponse)
async def start_trip(
    payload: TripStartRequest = Body(...),
    current_user: dict = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Start a trip (Driver only).

    Validates:
    - Vehicle exists, is active and belongs to the driver's fleet
    - Driver has no other Ongoing trip
    - Vehicle has no other Ongoing trip

    Actions:
    - Create Ongoing trip (opens the trip history scope)
    - Mark driver On Trip
    """
    driver = await _get_driver(db, current_user)

    vehicle_id = payload.vehicle_id or driver.assigned_vehicle_id
    if not vehicle_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No vehicle given and no vehicle assigned to you"
        )

    # Get vehicle
    vehicle_result = await db.execute(
        select(Vehicle).where(Vehicle.id == vehicle_id)
    )
    vehicle = vehicle_result.scalar_one_or_none()

    if not vehicle or vehicle.owner_id != driver.owner_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Vehicle not found"
        )

    if not vehicle.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Vehicle is inactive"
        )

    # One Ongoing trip per driver and per vehicle
    ongoing_result = await db.execute(
        select(Trip).where(
            Trip.status == TripStatus.ONGOING,
            (Trip.driver_id == driver.id) | (Trip.vehicle_id == vehicle.id)
        )
    )
    if ongoing_result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Driver or vehicle already has an Ongoing trip. End it before starting another."
        )

    trip = Trip(
        driver_id=driver.id,
        vehicle_id=vehicle.id,
        start_location=payload.start_location,
        start_lat=payload.start_lat,
        start_lng=payload.start_lng,
        end_location=payload.end_location,
        end_lat=payload.end_lat,
        end_lng=payload.end_lng,
        start_mileage=payload.start_mileage,
        purpose=payload.purpose,
        status=TripStatus.ONGOING,
        start_time=utcnow(),
        distance=0
    )
    driver.status = DriverStatus.ON_TRIP

    db.add(trip)
    await db.commit()
    await db.refresh(trip)

    logger.info("Driver %s started trip %s on vehicle %s", driver.id, trip.id, vehicle.id)
    return _trip_response(trip)


@router.post("/trips/{trip_id}/end", response_model=TripResponse)
async def end_trip(
    trip_id: int = Path(..., description="Trip ID"),
    payload: Optional[TripEndRequest] = Body(None),
    current_user: dict = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db)
):
    """
    End an Ongoing trip (Driver only).

    Samples reported afterwards go to the vehicle's day history.
    """
    payload = payload or TripEndRequest()
    driver = await _get_driver(db, current_user)
    trip = await _get_driver_trip(db, trip_id, driver)

    if trip.status != TripStatus.ONGOING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Can only end an Ongoing trip, current status: {trip.status.value}"
        )

    for field in ("end_mileage", "end_location", "end_lat", "end_lng", "fuel_consumed"):
        value = getattr(payload, field)
        if value is not None:
            setattr(trip, field, value)
    _check_mileage(trip)
    trip.recompute_distance()

    trip.status = TripStatus.COMPLETED
    trip.end_time = utcnow()
    driver.status = DriverStatus.AVAILABLE

    await db.commit()
    await db.refresh(trip)

    logger.info("Driver %s ended trip %s", driver.id, trip.id)
    return _trip_response(trip)


@router.patch("/trips/{trip_id}/mileage", response_model=TripResponse)
async def update_mileage(
    trip_id: int = Path(..., description="Trip ID"),
    payload: MileageUpdateRequest = Body(...),
    current_user: dict = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Correct odometer readings of a trip (Driver only).

    Distance is recomputed as end - start.
    """
    driver = await _get_driver(db, current_user)
    trip = await _get_driver_trip(db, trip_id, driver)

    if payload.start_mileage is not None:
        trip.start_mileage = payload.start_mileage
    if payload.end_mileage is not None:
        trip.end_mileage = payload.end_mileage
    _check_mileage(trip)
    trip.recompute_distance()

    await db.commit()
    await db.refresh(trip)
    return _trip_response(trip)
