"""
Driver profile database model.

Links a DRIVER user to the vehicle they are assigned to.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from fleet_backend.app.db.session import Base
from fleet_backend.app.models.trip_enums import DriverStatus


class Driver(Base):
    """Driver profile model."""
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    assigned_vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=True, index=True)
    license_number = Column(String(100), nullable=True)
    status = Column(Enum(DriverStatus), default=DriverStatus.AVAILABLE, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Driver(id={self.id}, user_id={self.user_id}, vehicle_id={self.assigned_vehicle_id})>"
