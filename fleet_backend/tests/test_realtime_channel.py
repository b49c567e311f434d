"""
Realtime tracking channel tests.

Drives TrackingChannel directly with recording observers in place of
sockets: join/leave, catch-up contents, send_location and error events.
"""

import asyncio
from datetime import timedelta

import pytest

from fleet_backend.app.api.v1.endpoints.realtime import TrackingChannel
from fleet_backend.app.core.config import settings
from fleet_backend.app.domain.tracking.broadcast_hub import SLOW_CONSUMER, Subscription
from fleet_backend.app.domain.tracking.catchup import CatchupBuilder
from fleet_backend.app.domain.tracking.types import (
    HistoryScope, PositionSample, day_scope_key, utcnow
)
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.trip_enums import TripStatus


class GatedObserver:
    """Takes the catch-up, then blocks live updates until released."""

    def __init__(self, observer_id):
        self.observer_id = observer_id
        self.release = asyncio.Event()
        self.messages = []

    async def send(self, message):
        if message["event"] == "receive_location":
            await self.release.wait()
        self.messages.append(message)


@pytest.fixture
async def open_channel(tracking, fleet, make_observer):
    """Factory: channel for a user with a fresh recording observer."""
    channels = []

    def factory(user, observer_id=None):
        observer = make_observer(observer_id or f"conn-{user.username}")
        channel = TrackingChannel(tracking, fleet.principal(user), observer)
        channels.append(channel)
        return channel, observer

    yield factory
    for channel in channels:
        channel.close()


def location(vehicle_id, lat=12.97, lng=77.59, **extra):
    data = {"vehicleId": vehicle_id, "latitude": lat, "longitude": lng}
    data.update(extra)
    return {"event": "send_location", "data": data}


def sample(vehicle_id, lat, ts=None):
    return PositionSample(vehicle_id=vehicle_id, latitude=lat, longitude=77.0, speed=5.0, timestamp=ts or utcnow())


# TEST 1: Join and catch-up
@pytest.mark.asyncio
async def test_join_vehicle_without_samples(open_channel, fleet):
    channel, observer = open_channel(fleet.owner)

    await channel.handle({"event": "join_vehicle", "vehicleId": fleet.vehicle.id})

    assert observer.events() == ["receive_route_history", "tracking_state"]
    history, state = observer.messages
    assert history["data"]["points"] == []
    assert history["data"]["scopeKey"] == day_scope_key(fleet.vehicle.id, utcnow().date())
    assert state["data"] == {
        "vehicleId": str(fleet.vehicle.id),
        "state": "NEVER",
        "lastUpdate": None,
        "lastUpdateLabel": "Never",
    }


@pytest.mark.asyncio
async def test_join_vehicle_catchup_after_reports(open_channel, fleet):
    driver_channel, _ = open_channel(fleet.driver_user)
    await driver_channel.handle(location(fleet.vehicle.id, lat=1.0))
    await driver_channel.handle(location(fleet.vehicle.id, lat=2.0))

    channel, observer = open_channel(fleet.owner)
    await channel.handle({"event": "join_vehicle", "data": {"vehicleId": str(fleet.vehicle.id)}})

    assert observer.events() == ["receive_location", "receive_route_history", "tracking_state"]
    assert observer.messages[0]["data"]["location"]["lat"] == 2.0
    assert [p["lat"] for p in observer.messages[1]["data"]["points"]] == [1.0, 2.0]
    assert observer.messages[2]["data"]["state"] == "LIVE"


@pytest.mark.asyncio
async def test_catchup_history_is_capped_at_recent_hundred(open_channel, fleet, tracking):
    vid = fleet.vehicle.id
    scope = HistoryScope.for_day(vid, utcnow().date())
    for i in range(150):
        await tracking.store.append_history(scope, sample(vid, i / 1000))

    channel, observer = open_channel(fleet.owner)
    await channel.handle({"event": "join_vehicle", "vehicleId": vid})

    points = observer.messages[0]["data"]["points"]
    assert len(points) == 100
    assert points[0]["lat"] == 50 / 1000
    assert points[-1]["lat"] == 149 / 1000


@pytest.mark.asyncio
async def test_catchup_prefers_ongoing_trip_scope_with_points(fleet, tracking, db_session):
    vid = fleet.vehicle.id
    trip = Trip(driver_id=fleet.driver.id, vehicle_id=vid, status=TripStatus.ONGOING, start_time=utcnow())
    db_session.add(trip)
    await db_session.commit()

    builder = CatchupBuilder(tracking.store, tracking.directory, tracking.staleness)
    await tracking.store.append_history(HistoryScope.for_day(vid, utcnow().date()), sample(vid, 1.0))

    # trip without points yet: today's scope
    assert await builder.active_scope_key(vid) == day_scope_key(vid, utcnow().date())

    await tracking.store.append_history(HistoryScope.for_trip(vid, trip.id), sample(vid, 2.0))
    assert await builder.active_scope_key(vid) == f"trip:{trip.id}"

    messages = await builder(vid)
    assert [p["lat"] for p in messages[0]["data"]["points"]] == [2.0]


@pytest.mark.asyncio
async def test_catchup_reports_stale_vehicle(fleet, tracking):
    vid = fleet.vehicle.id
    old = sample(vid, 3.0, ts=utcnow() - timedelta(minutes=20))
    await tracking.store.record(HistoryScope.for_day(vid, utcnow().date()), old)

    messages = await CatchupBuilder(tracking.store, tracking.directory, tracking.staleness)(vid)

    assert messages[-1]["data"]["state"] == "STALE"
    assert messages[-1]["data"]["lastUpdateLabel"] == "20m ago"


# TEST 2: Join authorization
@pytest.mark.asyncio
async def test_owner_cannot_join_foreign_vehicle(open_channel, fleet, tracking):
    channel, observer = open_channel(fleet.owner)

    await channel.handle({"event": "join_vehicle", "vehicleId": fleet.foreign_vehicle.id})

    assert observer.messages == [{
        "event": "error",
        "source": "join_vehicle",
        "data": {
            "error_code": "ERR_PERM_001",
            "message": "You do not have permission to track this vehicle",
            "details": {"vehicle_id": fleet.foreign_vehicle.id},
        },
    }]
    assert tracking.hub.subscriber_count(fleet.foreign_vehicle.id) == 0


@pytest.mark.asyncio
async def test_admin_joins_any_vehicle(open_channel, fleet, tracking):
    channel, observer = open_channel(fleet.admin)
    await channel.handle({"event": "join_vehicle", "vehicleId": fleet.foreign_vehicle.id})
    assert tracking.hub.subscriber_count(fleet.foreign_vehicle.id) == 1


@pytest.mark.asyncio
async def test_driver_joins_only_assigned_vehicle(open_channel, fleet, tracking):
    channel, observer = open_channel(fleet.driver_user)

    await channel.handle({"event": "join_vehicle", "vehicleId": fleet.vehicle.id})
    await channel.handle({"event": "join_vehicle", "vehicleId": fleet.second_vehicle.id})

    assert tracking.hub.subscriber_count(fleet.vehicle.id) == 1
    assert tracking.hub.subscriber_count(fleet.second_vehicle.id) == 0
    assert observer.messages[-1]["event"] == "error"


@pytest.mark.asyncio
async def test_join_unknown_vehicle_and_missing_id(open_channel, fleet):
    channel, observer = open_channel(fleet.owner)

    await channel.handle({"event": "join_vehicle", "vehicleId": 99999})
    await channel.handle({"event": "join_vehicle"})

    codes = [m["data"]["error_code"] for m in observer.messages]
    assert codes == ["ERR_NOT_FOUND_001", "ERR_VALIDATION_REQUIRED"]


@pytest.mark.asyncio
@pytest.mark.parametrize("as_text", [False, True])
async def test_join_accepts_bare_vehicle_id_as_data(open_channel, fleet, tracking, as_text):
    channel, observer = open_channel(fleet.owner)
    vid = fleet.vehicle.id

    await channel.handle({"event": "join_vehicle", "data": str(vid) if as_text else vid})

    assert observer.events() == ["receive_route_history", "tracking_state"]
    assert tracking.hub.subscriber_count(vid) == 1


@pytest.mark.asyncio
async def test_join_rejects_out_of_range_vehicle_ids(open_channel, fleet):
    channel, observer = open_channel(fleet.owner)

    for raw in (0, -1, 2**63, "1e999", True):
        await channel.handle({"event": "join_vehicle", "data": raw})

    assert [m["data"]["error_code"] for m in observer.messages] == ["ERR_VALIDATION_REQUIRED"] * 5


# TEST 3: Dropped subscriptions
@pytest.mark.asyncio
async def test_join_reports_drop_during_catchup(open_channel, fleet, tracking, mocker):
    vid = fleet.vehicle.id
    channel, observer = open_channel(fleet.owner)
    dropped = Subscription(
        vehicle_id=vid, observer=observer, queue=asyncio.Queue(),
        active=False, drop_reason=SLOW_CONSUMER
    )
    mocker.patch.object(tracking.hub, "subscribe", return_value=dropped)

    await channel.handle({"event": "join_vehicle", "vehicleId": vid})

    assert observer.messages == [{
        "event": "error",
        "source": "join_vehicle",
        "data": {
            "error_code": "ERR_SUBSCRIPTION_DROPPED",
            "message": "Live updates for this vehicle were dropped; join again",
            "details": {"vehicle_id": vid, "reason": "slow_consumer", "retryable": True},
        },
    }]


@pytest.mark.asyncio
async def test_slow_viewer_is_told_to_join_again(fleet, tracking):
    vid = fleet.vehicle.id
    viewer = GatedObserver("slow-viewer")
    channel = TrackingChannel(tracking, fleet.principal(fleet.owner), viewer)
    await channel.handle({"event": "join_vehicle", "vehicleId": vid})

    tracking.hub.publish(vid, {"event": "receive_location", "data": {"n": 0}})
    await asyncio.sleep(0.01)
    # n=0 is in flight; the rest fill the queue and one more overflows it
    for n in range(1, settings.subscriber_queue_size + 2):
        tracking.hub.publish(vid, {"event": "receive_location", "data": {"n": n}})
    assert tracking.hub.subscriber_count(vid) == 0

    viewer.release.set()
    await asyncio.sleep(0.05)

    events = [m["event"] for m in viewer.messages]
    assert events == ["receive_route_history", "tracking_state", "receive_location", "subscription_dropped"]
    assert viewer.messages[2]["data"] == {"n": 0}
    assert viewer.messages[-1]["data"] == {"vehicleId": str(vid), "reason": "slow_consumer"}

    await channel.handle({"event": "join_vehicle", "vehicleId": vid})
    assert tracking.hub.subscriber_count(vid) == 1
    channel.close()


# TEST 4: send_location
@pytest.mark.asyncio
async def test_send_location_acks_sender_and_reaches_viewers(open_channel, fleet):
    vid = fleet.vehicle.id
    viewer_channel, viewer = open_channel(fleet.owner)
    await viewer_channel.handle({"event": "join_vehicle", "vehicleId": vid})
    driver_channel, driver = open_channel(fleet.driver_user)
    await driver_channel.handle({"event": "join_vehicle", "vehicleId": vid})
    driver_catchup = len(driver.messages)

    await driver_channel.handle(location(vid, speed=25, timestamp="2024-05-01T12:00:00Z"))

    ack = driver.messages[-1]
    assert ack["event"] == "location_ack"
    assert ack["data"]["delivered"] == 1
    assert ack["data"]["timestamp"] == "2024-05-01T12:00:00Z"
    # the sender's own subscription does not echo its report
    assert len(driver.messages) == driver_catchup + 1

    await viewer.wait_for(3)
    assert viewer.messages[-1]["event"] == "receive_location"
    assert viewer.messages[-1]["data"]["location"]["speed"] == 25.0


@pytest.mark.asyncio
async def test_send_location_validation_errors(open_channel, fleet, tracking):
    channel, observer = open_channel(fleet.driver_user)

    await channel.handle({"event": "send_location", "data": {"vehicleId": fleet.vehicle.id, "latitude": "north"}})
    await channel.handle(location(fleet.vehicle.id, lat=-90.5))
    await channel.handle({"event": "send_location"})

    errors = [m["data"] for m in observer.messages]
    assert [e["error_code"] for e in errors] == ["ERR_VALIDATION_001", "ERR_VALIDATION_COORD", "ERR_VALIDATION_001"]
    assert errors[0]["details"]["errors"][0]["loc"] == ["latitude"]
    assert all(m["source"] == "send_location" for m in observer.messages)
    assert await tracking.store.get_snapshot(fleet.vehicle.id) is None


@pytest.mark.asyncio
async def test_send_location_rejects_vehicle_id_beyond_integer_range(open_channel, fleet, tracking):
    channel, observer = open_channel(fleet.driver_user)

    await channel.handle(location(2**63))

    error = observer.messages[0]["data"]
    assert error["error_code"] == "ERR_VALIDATION_001"
    assert error["details"]["errors"][0]["loc"] == ["vehicleId"]
    assert tracking.hub.get_stats()["total_published"] == 0

@pytest.mark.asyncio
async def test_send_location_for_unassigned_vehicle(open_channel, fleet):
    channel, observer = open_channel(fleet.spare_driver_user)

    await channel.handle(location(fleet.vehicle.id))

    assert observer.messages[0]["event"] == "error"
    assert observer.messages[0]["data"]["error_code"] == "ERR_PERM_001"


@pytest.mark.asyncio
async def test_unknown_event_is_reported(open_channel, fleet):
    channel, observer = open_channel(fleet.owner)

    await channel.handle({"event": "teleport"})
    await channel.handle(["not", "an", "object"])

    assert [m["data"]["error_code"] for m in observer.messages] == ["ERR_VALIDATION_EVENT"] * 2


# TEST 5: Leave and disconnect
@pytest.mark.asyncio
async def test_leave_vehicle_stops_delivery(open_channel, fleet, tracking):
    vid = fleet.vehicle.id
    channel, observer = open_channel(fleet.owner)
    await channel.handle({"event": "join_vehicle", "vehicleId": vid})
    await channel.handle({"event": "leave_vehicle", "vehicleId": vid})
    # leaving twice is harmless
    await channel.handle({"event": "leave_vehicle", "vehicleId": vid})

    driver_channel, _ = open_channel(fleet.driver_user)
    await driver_channel.handle(location(vid))

    assert tracking.hub.subscriber_count(vid) == 0
    assert observer.events() == ["receive_route_history", "tracking_state"]


@pytest.mark.asyncio
async def test_close_reaps_all_subscriptions(open_channel, fleet, tracking):
    channel, _ = open_channel(fleet.admin)
    await channel.handle({"event": "join_vehicle", "vehicleId": fleet.vehicle.id})
    await channel.handle({"event": "join_vehicle", "vehicleId": fleet.foreign_vehicle.id})

    assert channel.close() == 2
    assert tracking.hub.get_stats()["subscriptions"] == 0
    assert channel.close() == 0
