"""
Wiring of the live tracking pipeline.

Long-lived tracking objects are built once at application startup and kept
on app.state.tracking.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from fleet_backend.app.core.config import Settings
from fleet_backend.app.core.reliability import CircuitBreaker
from fleet_backend.app.domain.tracking.broadcast_hub import RealtimeBroadcastHub, send_drop_notice
from fleet_backend.app.domain.tracking.catchup import CatchupBuilder
from fleet_backend.app.domain.tracking.ingest import LocationIngestService
from fleet_backend.app.domain.tracking.position_store import PositionStore
from fleet_backend.app.domain.tracking.staleness import StalenessEvaluator
from fleet_backend.app.services.fleet_directory import FleetDirectory
from fleet_backend.app.services.routing_client import RoutingClient


@dataclass
class TrackingComponents:
    session_factory: async_sessionmaker
    store: PositionStore
    directory: FleetDirectory
    staleness: StalenessEvaluator
    hub: RealtimeBroadcastHub
    ingest: LocationIngestService
    routing: RoutingClient

    async def close(self) -> None:
        await self.hub.close()
        await self.routing.close()


def build_tracking_components(
    session_factory: async_sessionmaker,
    settings: Settings,
    routing_client: Optional[RoutingClient] = None,
) -> TrackingComponents:
    """
    Build the tracking pipeline.

    Args:
        session_factory: Sessions for the store and the directory
        settings: Thresholds, limits and routing configuration
        routing_client: Pre-built client (tests inject one with a mock transport)
    """
    store = PositionStore(session_factory)
    directory = FleetDirectory(session_factory)
    staleness = StalenessEvaluator(live_threshold=timedelta(minutes=settings.live_threshold_minutes))

    catchup = CatchupBuilder(store, directory, staleness, history_limit=settings.history_catchup_limit)
    hub = RealtimeBroadcastHub(
        catchup,
        queue_size=settings.subscriber_queue_size,
        on_drop=send_drop_notice,
    )
    ingest = LocationIngestService(store, directory, hub)

    if routing_client is None:
        routing_client = RoutingClient(
            settings.routing_base_url,
            timeout=settings.routing_timeout_seconds,
            breaker=CircuitBreaker(
                name="routing",
                failure_threshold=settings.routing_failure_threshold,
                reset_timeout=settings.routing_reset_timeout_seconds,
            ),
        )

    return TrackingComponents(
        session_factory=session_factory,
        store=store,
        directory=directory,
        staleness=staleness,
        hub=hub,
        ingest=ingest,
        routing=routing_client,
    )
