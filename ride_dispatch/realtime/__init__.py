"""Live session and event delivery modules."""

from ride_dispatch.realtime.bus import EventBus, LocalEventBus, RedisEventBus
from ride_dispatch.realtime.sessions import (
    TOPIC_ADMIN,
    TOPIC_ALL,
    TOPIC_DRIVERS,
    Principal,
    Session,
    SessionRegistry,
    authenticate,
    identity_topic,
)

__all__ = [
    "EventBus",
    "LocalEventBus",
    "RedisEventBus",
    "Principal",
    "Session",
    "SessionRegistry",
    "authenticate",
    "identity_topic",
    "TOPIC_ADMIN",
    "TOPIC_ALL",
    "TOPIC_DRIVERS",
]
