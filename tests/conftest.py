"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("EVENT_BUS_BACKEND", "local")
os.environ.setdefault("LOG_FORMAT", "text")

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator

import jwt
import pytest
import pytest_asyncio
from fakeredis import FakeServer
from fakeredis import aioredis as fake_aioredis

from ride_dispatch.config import Settings, get_settings
from ride_dispatch.core import DispatchCore, build_core
from ride_dispatch.models.driver import Driver, Location, VehicleClass
from ride_dispatch.models.ride import FareTerms, Place
from ride_dispatch.models.user import User, UserRole
from ride_dispatch.realtime.sessions import Principal
from ride_dispatch.state.manager import StateManager
from ride_dispatch.state.store import EntityStore

PICKUP = Location(lat=17.385, lng=78.486)
DROP = Location(lat=17.440, lng=78.448)


class FakeClock:
    """Controllable clock injected into the services."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeConnection:
    """Records what a session would have pushed to its client."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)

    def events(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.sent if event.get("type") == event_type]


def make_token(identity: str, role: str = "user", expires_in: int = 3600) -> str:
    """Sign an access token the way the auth service would."""
    settings = get_settings()
    claims = {
        "sub": identity,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def make_driver(
    user_id: str,
    lat: float,
    lng: float,
    vehicle_class: VehicleClass = VehicleClass.AUTO,
    **overrides: Any,
) -> Driver:
    """Build an online, available driver at a coordinate."""
    data: dict[str, Any] = {
        "user_id": user_id,
        "name": user_id.replace("-", " ").title(),
        "phone": "9876500000",
        "vehicle_class": vehicle_class,
        "vehicle_number": f"TS09{user_id[-4:].upper()}",
        "is_online": True,
        "location": Location(lat=lat, lng=lng),
    }
    data.update(overrides)
    return Driver(**data)


@pytest.fixture
def settings() -> Settings:
    """Settings for the in-process test core."""
    return get_settings().model_copy(update={"event_bus_backend": "local"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def state_manager() -> AsyncGenerator[StateManager, None]:
    """Create a state manager on an isolated fake Redis."""
    client = fake_aioredis.FakeRedis(
        server=FakeServer(),
        decode_responses=True,
    )
    manager = StateManager(redis_client=client)
    yield manager
    await manager.disconnect()


@pytest.fixture
def store(state_manager: StateManager) -> EntityStore:
    return EntityStore(state_manager)


@pytest.fixture
def core(state_manager: StateManager, settings: Settings, clock: FakeClock) -> DispatchCore:
    """Dispatch core delivering events in-process."""
    return build_core(state_manager, settings, clock=clock)


@pytest.fixture
def connect(core: DispatchCore):
    """Open a fake live session for an identity."""

    def _connect(identity: str, role: UserRole = UserRole.USER) -> FakeConnection:
        connection = FakeConnection()
        core.registry.register(connection, Principal(identity=identity, role=role))
        return connection

    return _connect


@pytest.fixture
def add_driver(store: EntityStore):
    """Persist a driver built by make_driver."""

    async def _add_driver(user_id: str, lat: float, lng: float, **kwargs: Any) -> Driver:
        return await store.save_driver(make_driver(user_id, lat, lng, **kwargs))

    return _add_driver


@pytest.fixture
def token_for():
    return make_token


# Sample data fixtures


@pytest.fixture
def pickup() -> Place:
    return Place(address="Charminar, Hyderabad", location=PICKUP)


@pytest.fixture
def drop() -> Place:
    return Place(address="Banjara Hills, Hyderabad", location=DROP)


@pytest.fixture
def fare() -> FareTerms:
    return FareTerms(base_fare=20, distance_fare=95, time_fare=10, total=125)


@pytest_asyncio.fixture
async def nearby_drivers(add_driver) -> list[Driver]:
    """Three online auto drivers at increasing distance from the pickup."""
    return [
        await add_driver("driver-near", 17.386, 78.486),
        await add_driver("driver-mid", 17.390, 78.486),
        await add_driver("driver-far", 17.400, 78.486),
    ]


@pytest_asyncio.fixture
async def requester(store: EntityStore) -> User:
    return await store.save_user(User(id="rider-anil", name="Anil Varma", phone="9123456780"))
