"""
Vehicle database model.

Fleet Owners register vehicles; live positions are keyed by vehicle id.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from fleet_backend.app.db.session import Base


class Vehicle(Base):
    """
    Vehicle model.

    A vehicle belongs to a Fleet Owner. It has at most one live snapshot
    and any number of route histories.
    """
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership - Vehicle belongs to Fleet Owner
    owner_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Vehicle identification
    registration_number = Column(String(100), unique=True, nullable=False, index=True)
    model = Column(String(100), nullable=True)
    vehicle_type = Column(String(100), nullable=True)  # e.g., "Truck", "Van", "Car"

    # Status
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Vehicle(id={self.id}, registration='{self.registration_number}', owner_id={self.owner_id})>"
