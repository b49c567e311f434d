"""
Route Projection Engine.

Derives the "remaining path" overlay from a planned reference path and the
vehicle's live position. No I/O and no state beyond the reference path.
"""

import math
from typing import List, Optional, Sequence

from fleet_backend.app.domain.tracking.types import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2) - math.radians(lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def nearest_index(path: Sequence[Coordinate], position: Coordinate) -> int:
    """
    Index of the path point closest to position (linear scan).

    Ties resolve to the earliest index. Path must be non-empty.
    """
    best_index = 0
    best_distance = math.inf
    for index, (lat, lng) in enumerate(path):
        distance = haversine_distance(position[0], position[1], lat, lng)
        if distance < best_distance:
            best_index = index
            best_distance = distance
    return best_index


class RouteProjectionEngine:
    """
    Keeps one reference path and projects positions onto it.

    Usage:
        engine = RouteProjectionEngine()
        engine.set_reference_path(path)
        remaining = engine.update((lat, lng))
    """

    def __init__(self, reference_path: Optional[Sequence[Coordinate]] = None):
        self._reference_path: Optional[List[Coordinate]] = None
        if reference_path is not None:
            self.set_reference_path(reference_path)

    @property
    def reference_path(self) -> Optional[List[Coordinate]]:
        return list(self._reference_path) if self._reference_path is not None else None

    @property
    def has_reference_path(self) -> bool:
        return self._reference_path is not None

    def set_reference_path(self, path: Sequence[Coordinate]) -> None:
        """Replace the working reference path (e.g. when a trip is selected)."""
        self._reference_path = [(float(lat), float(lng)) for lat, lng in path]

    def clear(self) -> None:
        """Forget the reference path, e.g. after a routing failure."""
        self._reference_path = None

    def update(self, current_position: Coordinate) -> List[Coordinate]:
        """
        Remaining path from the current position to the end of the route.

        Returns:
            [] when no reference path is set,
            [current] when the reference path is empty,
            otherwise [current] + path[nearest:]
        """
        if self._reference_path is None:
            return []

        current = (float(current_position[0]), float(current_position[1]))
        if not self._reference_path:
            return [current]

        start = nearest_index(self._reference_path, current)
        return [current] + self._reference_path[start:]
