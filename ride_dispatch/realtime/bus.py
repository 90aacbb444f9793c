"""Publish/subscribe delivery of server events to session groups."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable

from pydantic import BaseModel, Field

from ride_dispatch.errors import StoreUnavailableError
from ride_dispatch.models.events import ServerEvent
from ride_dispatch.realtime.sessions import SessionRegistry
from ride_dispatch.state.manager import StateManager, store_errors
from ride_dispatch.utils.logging import get_logger

logger = get_logger(__name__)


class Delivery(BaseModel):
    """Envelope carried between instances."""

    topic: str
    event: dict[str, Any]
    exclude: list[str] = Field(default_factory=list)


class EventBus(ABC):
    """Best-effort, at-most-once publication to named topics."""

    @abstractmethod
    async def publish(
        self,
        topic: str,
        event: ServerEvent,
        exclude: Iterable[str] = (),
    ) -> None:
        """Publish an event to every session in a topic."""
        pass


class LocalEventBus(EventBus):
    """Delivers straight to this process's sessions."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    async def publish(
        self,
        topic: str,
        event: ServerEvent,
        exclude: Iterable[str] = (),
    ) -> None:
        delivered = await self.registry.deliver(
            topic, event.model_dump(mode="json"), exclude=exclude
        )
        logger.debug("event_published", topic=topic, event_type=event.type, delivered=delivered)


class RedisEventBus(EventBus):
    """
    Fans events out to every service instance over Redis pub/sub.

    Each instance runs a listener that hands envelopes to its own registry,
    so a driver connected to instance A receives offers published by
    instance B. Missed messages are not replayed.
    """

    def __init__(
        self,
        state_manager: StateManager,
        registry: SessionRegistry,
        channel: str,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.state = state_manager
        self.registry = registry
        self.channel = channel
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.sleep = sleep
        self._failures = 0
        self._listener: asyncio.Task | None = None

    async def publish(
        self,
        topic: str,
        event: ServerEvent,
        exclude: Iterable[str] = (),
    ) -> None:
        delivery = Delivery(topic=topic, event=event.model_dump(mode="json"), exclude=list(exclude))
        await self.state.publish(self.channel, delivery.model_dump_json())
        logger.debug("event_published", topic=topic, event_type=event.type, channel=self.channel)

    async def handle_raw(self, data: str) -> None:
        """Deliver one envelope received from the channel."""
        try:
            delivery = Delivery(**json.loads(data))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning("delivery_envelope_invalid", channel=self.channel, error=str(e))
            return

        await self.registry.deliver(delivery.topic, delivery.event, exclude=delivery.exclude)

    async def listen(self) -> None:
        """Consume the channel until cancelled, resubscribing after connection faults."""
        while True:
            try:
                await self._consume()
                reason = "subscription_ended"
            except StoreUnavailableError as e:
                reason = str(e)

            wait_time = min(self.retry_delay * (2**self._failures), self.max_retry_delay)
            self._failures += 1
            logger.warning(
                "event_listener_disconnected",
                channel=self.channel,
                attempt=self._failures,
                retry_in_s=wait_time,
                reason=reason,
            )
            await self.sleep(wait_time)

    async def _consume(self) -> None:
        client = await self.state.client()
        pubsub = client.pubsub()
        try:
            with store_errors("subscribe"):
                await pubsub.subscribe(self.channel)
                self._failures = 0
                logger.info("event_listener_started", channel=self.channel)

                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self.handle_raw(message["data"])
        finally:
            await pubsub.aclose()
            logger.info("event_listener_stopped", channel=self.channel)

    def start(self) -> None:
        if self._listener is None:
            self._listener = asyncio.create_task(self.listen())

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
