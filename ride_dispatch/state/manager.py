"""Redis-based state manager shared by every service instance."""

import json
from contextlib import contextmanager
from typing import Any, Callable, Generator

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from ride_dispatch.config import get_settings
from ride_dispatch.errors import StoreUnavailableError
from ride_dispatch.utils.logging import get_logger

logger = get_logger(__name__)

# Receives the current decoded value of every watched key (None when absent)
# and returns the values to write, or None to leave the keys untouched.
TransactionFn = Callable[[list[Any]], dict[str, Any] | None]


@contextmanager
def store_errors(operation: str) -> Generator[None, None, None]:
    """Translate Redis connectivity faults into StoreUnavailableError."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as e:
        logger.warning("store_unavailable", operation=operation, error=str(e))
        raise StoreUnavailableError(f"Store unavailable during {operation}") from e


def _decode(value: Any) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value


class StateManager:
    """Centralized state management using Redis."""

    def __init__(self, redis_client: redis.Redis | None = None) -> None:
        settings = get_settings()
        self.redis_client: redis.Redis | None = redis_client
        self.redis_url = settings.redis_url
        self.max_attempts = settings.store_max_attempts

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    async def client(self) -> redis.Redis:
        """Get the connected client."""
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        nx: bool = False,
    ) -> bool:
        """Set a value in Redis with optional TTL; returns False when nx blocks it."""
        client = await self.client()

        # Serialize complex objects to JSON
        if isinstance(value, (dict, list)):
            value = json.dumps(value)

        with store_errors("set"):
            result = await client.set(key, value, ex=ttl, nx=nx)

        logger.debug("state_set", key=key, ttl=ttl, nx=nx)
        return bool(result)

    async def get(self, key: str) -> Any:
        """Get a value from Redis."""
        client = await self.client()

        with store_errors("get"):
            value = await client.get(key)

        return _decode(value)

    async def delete(self, key: str) -> None:
        """Delete a key from Redis."""
        client = await self.client()

        with store_errors("delete"):
            await client.delete(key)
        logger.debug("state_deleted", key=key)

    async def zadd(self, key: str, mapping: dict[str, float]) -> None:
        """Add members to a sorted set."""
        client = await self.client()

        with store_errors("zadd"):
            await client.zadd(key, mapping)

    async def zrevrange(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        """Get members from a sorted set, highest score first."""
        client = await self.client()

        with store_errors("zrevrange"):
            return await client.zrevrange(key, start, end)

    async def zrem(self, key: str, *members: str) -> None:
        """Remove members from a sorted set."""
        client = await self.client()

        with store_errors("zrem"):
            await client.zrem(key, *members)

    async def geoadd(self, key: str, lng: float, lat: float, member: str) -> None:
        """Add or move a member in a geo index."""
        client = await self.client()

        with store_errors("geoadd"):
            await client.geoadd(key, (lng, lat, member))

    async def geosearch(
        self,
        key: str,
        lng: float,
        lat: float,
        radius_m: float,
        count: int | None = None,
    ) -> list[tuple[str, float]]:
        """Members within radius of a point as (member, meters), nearest first."""
        client = await self.client()

        with store_errors("geosearch"):
            results = await client.geosearch(
                key,
                longitude=lng,
                latitude=lat,
                radius=radius_m,
                unit="m",
                sort="ASC",
                count=count,
                withdist=True,
            )

        return [(str(member), float(distance)) for member, distance in results]

    async def publish(self, channel: str, message: str) -> None:
        """Publish a message to a channel."""
        client = await self.client()

        with store_errors("publish"):
            await client.publish(channel, message)
        logger.debug("message_published", channel=channel)

    async def transaction(self, keys: list[str], apply: TransactionFn) -> dict[str, Any] | None:
        """
        Compare-and-swap over one or more keys.

        Watches the keys, reads them, and lets ``apply`` decide what to write
        from the values it saw. The write commits only if no watched key
        changed in between; otherwise the read and decision are repeated
        against fresh state. Exceptions raised by ``apply`` abort without
        writing.

        Args:
            keys: Keys to watch and read
            apply: Decision function over the current decoded values

        Returns:
            The values written, or None if ``apply`` chose not to write
        """
        client = await self.client()

        for attempt in range(1, self.max_attempts + 1):
            with store_errors("transaction"):
                async with client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(*keys)
                        current = [_decode(await pipe.get(key)) for key in keys]

                        writes = apply(current)
                        if writes is None:
                            await pipe.unwatch()
                            return None

                        pipe.multi()
                        for key, value in writes.items():
                            pipe.set(key, json.dumps(value))
                        await pipe.execute()
                        return writes

                    except WatchError:
                        logger.debug("transaction_conflict", keys=keys, attempt=attempt)

        logger.warning("transaction_exhausted", keys=keys, attempts=self.max_attempts)
        raise StoreUnavailableError(
            "Too much contention on the requested records", keys=keys
        )


# Global state manager instance
_state_manager: StateManager | None = None


async def get_state_manager() -> StateManager:
    """Get the global state manager instance."""
    global _state_manager
    if _state_manager is None:
        _state_manager = StateManager()
        await _state_manager.connect()
    return _state_manager
