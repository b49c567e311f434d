"""
Trip database model.

A trip is started by a driver on a vehicle (Ongoing) and later completed,
or logged manually after the fact (Completed).
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from fleet_backend.app.db.session import Base
from fleet_backend.app.models.trip_enums import TripStatus


class Trip(Base):
    """
    Trip model.

    While a trip is Ongoing, position samples reported with its id are
    appended to the trip-scoped route history.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=True, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)

    # Waypoints (labels plus optional coordinates for the routing collaborator)
    start_location = Column(String(255), nullable=True)
    start_lat = Column(Float, nullable=True)
    start_lng = Column(Float, nullable=True)
    end_location = Column(String(255), nullable=True)
    end_lat = Column(Float, nullable=True)
    end_lng = Column(Float, nullable=True)

    # Odometer readings, distance derived as end - start (km)
    start_mileage = Column(Float, nullable=True)
    end_mileage = Column(Float, nullable=True)
    distance = Column(Float, default=0, nullable=False)
    fuel_consumed = Column(Float, nullable=True)
    purpose = Column(String(255), nullable=True)

    status = Column(Enum(TripStatus), default=TripStatus.ONGOING, nullable=False, index=True)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def recompute_distance(self) -> None:
        """Keep distance in sync with the odometer readings."""
        if self.start_mileage is not None and self.end_mileage is not None:
            self.distance = self.end_mileage - self.start_mileage

    def waypoints(self):
        """Return ((start_lat, start_lng), (end_lat, end_lng)) or None if incomplete."""
        coords = (self.start_lat, self.start_lng, self.end_lat, self.end_lng)
        if any(c is None for c in coords):
            return None
        return (self.start_lat, self.start_lng), (self.end_lat, self.end_lng)

    def __repr__(self):
        return f"<Trip(id={self.id}, vehicle_id={self.vehicle_id}, status='{self.status.value}')>"
