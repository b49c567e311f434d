"""
Driver trip lifecycle tests.

Starting a trip opens its history scope; ending it sends later samples
back to the day scope.
"""

import pytest

from fleet_backend.app.domain.tracking.types import day_scope_key, utcnow
from fleet_backend.app.models.trip_enums import DriverStatus


async def start(client, fleet, user=None, **body):
    return await client.post(
        "/v1/driver/trips/start",
        json=body,
        headers=fleet.headers(user or fleet.driver_user)
    )


# TEST 1: Start
@pytest.mark.asyncio
async def test_start_trip_on_assigned_vehicle(client, fleet, db_session):
    response = await start(client, fleet, start_location="Depot", start_mileage=1000)

    assert response.status_code == 201
    trip = response.json()
    assert trip["status"] == "Ongoing"
    assert trip["vehicle_id"] == fleet.vehicle.id
    assert trip["driver_id"] == fleet.driver.id
    assert trip["history_scope"] == f"trip:{trip['id']}"

    await db_session.refresh(fleet.driver)
    assert fleet.driver.status == DriverStatus.ON_TRIP


@pytest.mark.asyncio
async def test_start_trip_conflicts(client, fleet):
    assert (await start(client, fleet)).status_code == 201

    # same driver again
    again = await start(client, fleet)
    assert again.status_code == 409

    # another driver on the busy vehicle
    busy = await start(client, fleet, user=fleet.spare_driver_user, vehicle_id=fleet.vehicle.id)
    assert busy.status_code == 409
    assert busy.json()["error_code"] == "ERR_CONFLICT"


@pytest.mark.asyncio
async def test_start_trip_vehicle_checks(client, fleet):
    foreign = await start(client, fleet, vehicle_id=fleet.foreign_vehicle.id)
    assert foreign.status_code == 404

    inactive = await start(client, fleet, vehicle_id=fleet.inactive_vehicle.id)
    assert inactive.status_code == 400

    no_vehicle = await start(client, fleet, user=fleet.spare_driver_user)
    assert no_vehicle.status_code == 400


@pytest.mark.asyncio
async def test_only_drivers_start_trips(client, fleet):
    response = await start(client, fleet, user=fleet.owner)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_waypoint_is_rejected(client, fleet):
    response = await start(client, fleet, start_lat=95.0, start_lng=0.0)
    assert response.status_code == 422


# TEST 2: End
@pytest.mark.asyncio
async def test_end_trip_computes_distance(client, fleet, db_session):
    trip = (await start(client, fleet, start_mileage=1000)).json()

    response = await client.post(
        f"/v1/driver/trips/{trip['id']}/end",
        json={"end_mileage": 1042.5, "end_location": "Warehouse"},
        headers=fleet.headers(fleet.driver_user)
    )

    assert response.status_code == 200
    ended = response.json()
    assert ended["status"] == "Completed"
    assert ended["distance"] == 42.5
    assert ended["end_time"] is not None

    await db_session.refresh(fleet.driver)
    assert fleet.driver.status == DriverStatus.AVAILABLE


@pytest.mark.asyncio
async def test_end_trip_without_body(client, fleet):
    trip = (await start(client, fleet)).json()

    response = await client.post(f"/v1/driver/trips/{trip['id']}/end", headers=fleet.headers(fleet.driver_user))
    assert response.status_code == 200

    twice = await client.post(f"/v1/driver/trips/{trip['id']}/end", headers=fleet.headers(fleet.driver_user))
    assert twice.status_code == 400


@pytest.mark.asyncio
async def test_end_mileage_below_start_is_rejected(client, fleet):
    trip = (await start(client, fleet, start_mileage=1000)).json()

    response = await client.post(
        f"/v1/driver/trips/{trip['id']}/end",
        json={"end_mileage": 900},
        headers=fleet.headers(fleet.driver_user)
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_other_driver_cannot_end_trip(client, fleet):
    trip = (await start(client, fleet)).json()

    response = await client.post(
        f"/v1/driver/trips/{trip['id']}/end",
        headers=fleet.headers(fleet.spare_driver_user)
    )
    assert response.status_code == 403

    missing = await client.post("/v1/driver/trips/99999/end", headers=fleet.headers(fleet.driver_user))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_mileage_correction_recomputes_distance(client, fleet):
    trip = (await start(client, fleet, start_mileage=1000)).json()

    response = await client.patch(
        f"/v1/driver/trips/{trip['id']}/mileage",
        json={"start_mileage": 990, "end_mileage": 1010},
        headers=fleet.headers(fleet.driver_user)
    )

    assert response.status_code == 200
    assert response.json()["distance"] == 20


# TEST 3: Scope switching
@pytest.mark.asyncio
async def test_samples_follow_trip_lifecycle(client, fleet):
    trip = (await start(client, fleet)).json()
    body = {"vehicleId": fleet.vehicle.id, "latitude": 12.9, "longitude": 77.6, "tripId": trip["id"]}

    during = await client.post("/v1/location/update", json=body, headers=fleet.headers(fleet.driver_user))
    assert during.json()["data"]["scopeKey"] == trip["history_scope"]

    await client.post(f"/v1/driver/trips/{trip['id']}/end", headers=fleet.headers(fleet.driver_user))

    after = await client.post("/v1/location/update", json=body, headers=fleet.headers(fleet.driver_user))
    assert after.json()["data"]["scopeKey"] == day_scope_key(fleet.vehicle.id, utcnow().date())
