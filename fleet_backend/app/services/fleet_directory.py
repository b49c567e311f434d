"""
Fleet directory lookups for the tracking pipeline.

Read-only access to vehicles, drivers and trips. Used to authorize position
reports, to pick the active history scope and to join display metadata.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from fleet_backend.app.core.exceptions import StoreUnavailableError
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.trip_enums import TripStatus
from fleet_backend.app.models.vehicle import Vehicle

logger = logging.getLogger(__name__)


class FleetDirectory:
    """
    Directory reads, each in its own short session.

    Args:
        session_factory: async_sessionmaker bound to the fleet database
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str):
        try:
            async with self._session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            logger.error("Directory lookup %s failed: %s", operation, e)
            raise StoreUnavailableError(operation, reason=type(e).__name__) from e

    async def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        async with self._session("get_vehicle") as db:
            result = await db.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
            return result.scalar_one_or_none()

    async def list_vehicles(self, owner_id: Optional[int] = None) -> List[Vehicle]:
        """All vehicles, or only those of one fleet owner."""
        async with self._session("list_vehicles") as db:
            query = select(Vehicle).order_by(Vehicle.id)
            if owner_id is not None:
                query = query.where(Vehicle.owner_id == owner_id)
            result = await db.execute(query)
            return list(result.scalars().all())

    async def get_driver_by_user(self, user_id: int) -> Optional[Driver]:
        async with self._session("get_driver_by_user") as db:
            result = await db.execute(select(Driver).where(Driver.user_id == user_id))
            return result.scalar_one_or_none()

    async def get_trip(self, trip_id: int) -> Optional[Trip]:
        async with self._session("get_trip") as db:
            result = await db.execute(select(Trip).where(Trip.id == trip_id))
            return result.scalar_one_or_none()

    async def get_ongoing_trip(self, vehicle_id: int, driver_id: Optional[int] = None) -> Optional[Trip]:
        """
        Most recently started Ongoing trip of a vehicle.

        Args:
            vehicle_id: Vehicle to look up
            driver_id: Restrict to trips driven by this driver
        """
        async with self._session("get_ongoing_trip") as db:
            query = select(Trip).where(
                Trip.vehicle_id == vehicle_id,
                Trip.status == TripStatus.ONGOING
            )
            if driver_id is not None:
                query = query.where(Trip.driver_id == driver_id)
            result = await db.execute(query.order_by(Trip.start_time.desc(), Trip.id.desc()).limit(1))
            return result.scalar_one_or_none()
