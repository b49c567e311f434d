"""
Centralized Test Configuration.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from fleet_backend.app.main import app
from fleet_backend.app.core.config import settings
from fleet_backend.app.core.jwt import create_user_token
from fleet_backend.app.core.reliability import CircuitBreaker
from fleet_backend.app.db.session import get_db, Base
from fleet_backend.app.domain.tracking.components import build_tracking_components
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.models.user import User
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.app.services.routing_client import RoutingClient
import fleet_backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
ROUTING_BASE_URL = "http://routing.test"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def setex(self, key, ttl, value):
        return await self.set(key, value, ex=ttl)

    async def delete(self, key):
        if self._closed:
            return 0
        return 1 if self.store.pop(key, None) is not None else 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    def flushdb(self):
        self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class RecordingObserver:
    """Hub observer that keeps every message it is sent."""

    def __init__(self, observer_id: str = "observer"):
        self.observer_id = observer_id
        self.messages: List[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def events(self) -> List[str]:
        return [m["event"] for m in self.messages]

    async def wait_for(self, count: int, timeout: float = 1.0) -> List[dict]:
        """Wait until at least `count` messages arrived (sender tasks run async)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self.messages) < count and loop.time() < deadline:
            await asyncio.sleep(0.01)
        return self.messages


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    # Patch the global redis client read by the revocation checks
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def routing_calls():
    """Requests seen by the mocked routing service."""
    return []


@pytest.fixture
def routing_response():
    """Mutable OSRM response returned by the mocked routing service."""
    return {
        "status": 200,
        "json": {
            "code": "Ok",
            "routes": [{"geometry": {"type": "LineString", "coordinates": [
                [0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0]
            ]}}],
        },
    }


@pytest.fixture
async def routing_client(routing_calls, routing_response):
    def handler(request: httpx.Request) -> httpx.Response:
        routing_calls.append(request)
        return httpx.Response(routing_response["status"], json=routing_response["json"])

    client = RoutingClient(
        ROUTING_BASE_URL,
        breaker=CircuitBreaker(name="routing-test", failure_threshold=2, reset_timeout=30),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    yield client
    await client.close()


@pytest.fixture
async def tracking(routing_client):
    """Tracking pipeline on the test database, installed on the app."""
    components = build_tracking_components(TestingSessionLocal, settings, routing_client=routing_client)
    app.state.tracking = components
    yield components
    await components.hub.close()


@pytest.fixture
async def client(tracking):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@dataclass
class Fleet:
    admin: User
    owner: User
    other_owner: User
    driver_user: User
    spare_driver_user: User
    driver: Driver
    spare_driver: Driver
    vehicle: Vehicle
    second_vehicle: Vehicle
    inactive_vehicle: Vehicle
    foreign_vehicle: Vehicle

    def token(self, user: User) -> str:
        return create_user_token(user)

    def headers(self, user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token(user)}"}

    def principal(self, user: User) -> dict:
        return {"user_id": user.id, "role": user.role.value, "sub": user.username}


@pytest.fixture
async def fleet(db_session):
    """
    Two fleet owners, an admin and two drivers.

    driver is assigned to vehicle; spare_driver has no vehicle.
    foreign_vehicle belongs to other_owner.
    """
    admin = User(email="admin@test.com", username="admin", role=UserRole.ADMIN)
    owner = User(email="owner@test.com", username="owner", role=UserRole.FLEET_OWNER)
    other_owner = User(email="other@test.com", username="other", role=UserRole.FLEET_OWNER)
    driver_user = User(email="driver@test.com", username="driver", role=UserRole.DRIVER)
    spare_driver_user = User(email="spare@test.com", username="spare", role=UserRole.DRIVER)
    db_session.add_all([admin, owner, other_owner, driver_user, spare_driver_user])
    await db_session.flush()

    vehicle = Vehicle(owner_id=owner.id, registration_number="TRK-001", model="Ace")
    second_vehicle = Vehicle(owner_id=owner.id, registration_number="TRK-002", model="Eeco")
    inactive_vehicle = Vehicle(owner_id=owner.id, registration_number="TRK-003", is_active=False)
    foreign_vehicle = Vehicle(owner_id=other_owner.id, registration_number="OTH-001")
    db_session.add_all([vehicle, second_vehicle, inactive_vehicle, foreign_vehicle])
    await db_session.flush()

    driver = Driver(user_id=driver_user.id, owner_id=owner.id, assigned_vehicle_id=vehicle.id)
    spare_driver = Driver(user_id=spare_driver_user.id, owner_id=owner.id)
    db_session.add_all([driver, spare_driver])
    await db_session.commit()

    return Fleet(
        admin=admin,
        owner=owner,
        other_owner=other_owner,
        driver_user=driver_user,
        spare_driver_user=spare_driver_user,
        driver=driver,
        spare_driver=spare_driver,
        vehicle=vehicle,
        second_vehicle=second_vehicle,
        inactive_vehicle=inactive_vehicle,
        foreign_vehicle=foreign_vehicle,
    )


@pytest.fixture
def make_observer():
    """Factory for RecordingObserver instances."""
    return RecordingObserver
