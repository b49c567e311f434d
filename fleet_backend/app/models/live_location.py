"""
Live location database model.

Single-row "last known position" snapshot per vehicle.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime
from sqlalchemy.sql import func
from fleet_backend.app.db.session import Base


class LiveLocation(Base):
    """
    Live location snapshot.

    Overwritten on every accepted sample, in arrival order. The unique
    constraint on vehicle_id keeps one row per vehicle.
    """
    __tablename__ = "live_locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), unique=True, nullable=False, index=True)
    reporting_driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, default=0, nullable=False)  # km/h

    recorded_at = Column(DateTime(timezone=True), nullable=False)  # Sample timestamp
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<LiveLocation(vehicle_id={self.vehicle_id}, lat={self.latitude}, lng={self.longitude})>"
