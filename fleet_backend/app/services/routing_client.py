"""
Routing collaborator client.

Fetches the planned reference path between a trip's start and end
waypoints from an OSRM compatible routing service.
"""

import logging
from collections import OrderedDict
from typing import List, Optional, Tuple

import httpx

from fleet_backend.app.core.exceptions import RoutingUnavailableError
from fleet_backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from fleet_backend.app.domain.tracking.types import Coordinate
from fleet_backend.app.models.trip import Trip

logger = logging.getLogger(__name__)

CacheKey = Tuple[int, Coordinate, Coordinate]


class RoutingClient:
    """
    OSRM "route/v1/driving" client with a circuit breaker and a small
    per-(trip, waypoints) path cache.

    Args:
        base_url: Routing service root, None disables routing
        timeout: Per-request timeout in seconds
        breaker: Circuit breaker shared by all calls of this client
        http_client: Injected httpx.AsyncClient (tests use MockTransport)
        cache_size: Number of reference paths kept
    """

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        cache_size: int = 256,
    ):
        self._base_url = base_url.rstrip("/") if base_url else None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._breaker = breaker or CircuitBreaker(name="routing", failure_threshold=3, reset_timeout=30)
        self._cache: "OrderedDict[CacheKey, List[Coordinate]]" = OrderedDict()
        self._cache_size = cache_size

    @property
    def enabled(self) -> bool:
        return self._base_url is not None

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_trip_path(self, trip: Trip) -> List[Coordinate]:
        """
        Reference path for a trip, cached until its waypoints change.

        Raises:
            RoutingUnavailableError: trip has no coordinates or routing failed
        """
        waypoints = trip.waypoints()
        if waypoints is None:
            raise RoutingUnavailableError("Trip has no waypoint coordinates")

        start, end = waypoints
        key = (trip.id, start, end)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return list(cached)

        path = await self.fetch_reference_path(start, end)
        self._cache[key] = path
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return list(path)

    async def fetch_reference_path(self, start: Coordinate, end: Coordinate) -> List[Coordinate]:
        """
        Ordered (lat, lng) points of the driving route from start to end.

        Raises:
            RoutingUnavailableError: routing disabled, circuit open, transport
                or response format failure
        """
        if not self.enabled:
            raise RoutingUnavailableError("Routing is not configured")

        try:
            return await self._breaker.call(self._request_route, start, end)
        except CircuitOpenError as e:
            raise RoutingUnavailableError(str(e)) from e
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("Routing request %s -> %s failed: %s", start, end, e)
            raise RoutingUnavailableError(type(e).__name__) from e

    async def _request_route(self, start: Coordinate, end: Coordinate) -> List[Coordinate]:
        # OSRM takes lng,lat pairs
        coordinates = f"{start[1]},{start[0]};{end[1]},{end[0]}"
        response = await self._client.get(
            f"{self._base_url}/route/v1/driving/{coordinates}",
            params={"overview": "full", "geometries": "geojson"},
        )
        response.raise_for_status()

        data = response.json()
        if data.get("code") != "Ok" or not data.get("routes"):
            raise ValueError(f"No route found (code={data.get('code')})")

        geometry = data["routes"][0]["geometry"]["coordinates"]
        return [(float(lat), float(lng)) for lng, lat in geometry]
