"""Tests for authentication and session groups."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from ride_dispatch.config import get_settings
from ride_dispatch.errors import AuthError
from ride_dispatch.models.user import UserRole
from ride_dispatch.realtime.sessions import (
    TOPIC_ADMIN,
    TOPIC_ALL,
    TOPIC_DRIVERS,
    Principal,
    SessionRegistry,
    authenticate,
    identity_topic,
)


class RecordingConnection:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, data) -> None:
        if self.fail:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)


def sign(claims: dict, key: str | None = None) -> str:
    settings = get_settings()
    return jwt.encode(claims, key or settings.secret_key, algorithm=settings.jwt_algorithm)


def test_authenticate_valid_token(token_for) -> None:
    principal = authenticate(token_for("driver-ravi", "driver"))

    assert principal == Principal(identity="driver-ravi", role=UserRole.DRIVER)
    assert principal.is_driver


def test_authenticate_legacy_identity_claim() -> None:
    """Test that tokens carrying userId instead of sub are accepted."""
    principal = authenticate(sign({"userId": "rider-anil"}))

    assert principal.identity == "rider-anil"
    assert principal.role == UserRole.USER


def test_authenticate_rejects_expired_token(token_for) -> None:
    with pytest.raises(AuthError, match="expired"):
        authenticate(token_for("rider-anil", expires_in=-60))


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "not-a-jwt",
        sign({"sub": "rider-anil"}, key="some-other-secret-of-sufficient-length"),
        sign({"role": "user"}),
        sign({"sub": "rider-anil", "role": "superuser"}),
    ],
)
def test_authenticate_rejects_bad_tokens(token) -> None:
    with pytest.raises(AuthError):
        authenticate(token)


def test_register_joins_role_groups() -> None:
    registry = SessionRegistry()

    driver = registry.register(RecordingConnection(), Principal("driver-ravi", UserRole.DRIVER))
    admin = registry.register(RecordingConnection(), Principal("ops-desk", UserRole.ADMIN))
    rider = registry.register(RecordingConnection(), Principal("rider-anil", UserRole.USER))

    assert driver.topics == {identity_topic("driver-ravi"), TOPIC_ALL, TOPIC_DRIVERS}
    assert admin.topics == {identity_topic("ops-desk"), TOPIC_ALL, TOPIC_ADMIN}
    assert rider.topics == {identity_topic("rider-anil"), TOPIC_ALL}
    assert len(registry.members(TOPIC_ALL)) == 3
    assert registry.session_count == 3


@pytest.mark.asyncio
async def test_deliver_reaches_every_session_of_identity() -> None:
    """Test that an identity with two open sessions receives on both."""
    registry = SessionRegistry()
    phone = RecordingConnection()
    tablet = RecordingConnection()
    registry.register(phone, Principal("rider-anil", UserRole.USER))
    registry.register(tablet, Principal("rider-anil", UserRole.USER))

    delivered = await registry.deliver(identity_topic("rider-anil"), {"type": "pong"})

    assert delivered == 2
    assert phone.sent == [{"type": "pong"}]
    assert tablet.sent == [{"type": "pong"}]


@pytest.mark.asyncio
async def test_deliver_excludes_identities() -> None:
    registry = SessionRegistry()
    winner = RecordingConnection()
    other = RecordingConnection()
    registry.register(winner, Principal("driver-ravi", UserRole.DRIVER))
    registry.register(other, Principal("driver-sita", UserRole.DRIVER))

    delivered = await registry.deliver(TOPIC_DRIVERS, {"type": "ride_taken"}, exclude=["driver-ravi"])

    assert delivered == 1
    assert winner.sent == []
    assert other.sent == [{"type": "ride_taken"}]


@pytest.mark.asyncio
async def test_unregistered_session_receives_nothing() -> None:
    registry = SessionRegistry()
    connection = RecordingConnection()
    session = registry.register(connection, Principal("driver-ravi", UserRole.DRIVER))

    registry.unregister(session)
    registry.unregister(session)

    assert await registry.deliver(TOPIC_DRIVERS, {"type": "ride_taken"}) == 0
    assert connection.sent == []
    assert registry.session_count == 0


@pytest.mark.asyncio
async def test_failed_send_drops_session() -> None:
    registry = SessionRegistry()
    healthy = RecordingConnection()
    registry.register(healthy, Principal("driver-ravi", UserRole.DRIVER))
    registry.register(RecordingConnection(fail=True), Principal("driver-sita", UserRole.DRIVER))

    delivered = await registry.deliver(TOPIC_DRIVERS, {"type": "ride_request_broadcast"})

    assert delivered == 1
    assert healthy.sent == [{"type": "ride_request_broadcast"}]
    assert registry.session_count == 1
    assert registry.members(identity_topic("driver-sita")) == []
