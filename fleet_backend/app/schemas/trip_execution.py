"""
Trip execution schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class TripStartRequest(BaseModel):
    """Schema for starting a trip; vehicle defaults to the driver's assigned one."""
    vehicle_id: Optional[int] = None
    start_location: Optional[str] = Field(None, max_length=255)
    start_lat: Optional[float] = Field(None, ge=-90, le=90)
    start_lng: Optional[float] = Field(None, ge=-180, le=180)
    end_location: Optional[str] = Field(None, max_length=255)
    end_lat: Optional[float] = Field(None, ge=-90, le=90)
    end_lng: Optional[float] = Field(None, ge=-180, le=180)
    start_mileage: Optional[float] = Field(None, ge=0)
    purpose: Optional[str] = Field(None, max_length=255)


class TripEndRequest(BaseModel):
    """Schema for ending a trip."""
    end_mileage: Optional[float] = Field(None, ge=0)
    end_location: Optional[str] = Field(None, max_length=255)
    end_lat: Optional[float] = Field(None, ge=-90, le=90)
    end_lng: Optional[float] = Field(None, ge=-180, le=180)
    fuel_consumed: Optional[float] = Field(None, ge=0)


class MileageUpdateRequest(BaseModel):
    """Odometer correction; distance is recomputed."""
    start_mileage: Optional[float] = Field(None, ge=0)
    end_mileage: Optional[float] = Field(None, ge=0)


class TripResponse(BaseModel):
    """Trip response."""
    id: int
    driver_id: Optional[int]
    vehicle_id: int
    status: str  # Ongoing, Completed
    start_location: Optional[str]
    start_lat: Optional[float]
    start_lng: Optional[float]
    end_location: Optional[str]
    end_lat: Optional[float]
    end_lng: Optional[float]
    start_mileage: Optional[float]
    end_mileage: Optional[float]
    distance: float
    fuel_consumed: Optional[float]
    purpose: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]
    history_scope: str

    class Config:
        from_attributes = True
