"""
Trip and driver related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    ONGOING = "Ongoing"  # Driver is on the road, samples are trip-scoped
    COMPLETED = "Completed"  # Ended or manually logged


class DriverStatus(str, enum.Enum):
    """Driver availability enumeration."""
    AVAILABLE = "Available"
    ON_TRIP = "On Trip"
