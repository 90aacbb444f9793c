"""Ride, driver and user records on top of the state manager."""

from typing import Any, Callable, TypeVar
from uuid import UUID

from pydantic import BaseModel

from ride_dispatch.errors import NotFoundError
from ride_dispatch.models.driver import Driver, Location, VehicleClass
from ride_dispatch.models.ride import Ride
from ride_dispatch.models.user import User
from ride_dispatch.state.manager import StateManager
from ride_dispatch.utils.logging import get_logger

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# Decision over the current records (None when absent). Returns the records to
# persist, or None to write nothing. May raise to abort.
RecordsFn = Callable[[list[Any]], list[BaseModel] | None]


class EntityStore:
    """Persists entities and exposes the conditional updates dispatch relies on."""

    def __init__(self, state_manager: StateManager):
        self.state = state_manager

    # Keys

    def _ride_key(self, ride_pk: UUID) -> str:
        return f"ride:{ride_pk}"

    def _ride_code_key(self, ride_id: str) -> str:
        return f"ride-code:{ride_id}"

    def _history_key(self, requester_id: str) -> str:
        return f"user:{requester_id}:rides"

    def _driver_key(self, driver_id: UUID) -> str:
        return f"driver:{driver_id}"

    def _driver_user_key(self, user_id: str) -> str:
        return f"driver-user:{user_id}"

    def _user_key(self, user_id: str) -> str:
        return f"user:{user_id}"

    def _geo_key(self, vehicle_class: VehicleClass) -> str:
        return f"drivers:geo:{vehicle_class.value}"

    def key_for(self, record: BaseModel) -> str:
        """Storage key of a ride or driver record."""
        if isinstance(record, Ride):
            return self._ride_key(record.id)
        if isinstance(record, Driver):
            return self._driver_key(record.id)
        raise TypeError(f"Unsupported record type {type(record).__name__}")

    # Rides

    async def reserve_ride_code(self, ride: Ride) -> bool:
        """Claim the ride's public code; False if another ride holds it."""
        return await self.state.set(
            self._ride_code_key(ride.ride_id), str(ride.id), nx=True
        )

    async def create_ride(self, ride: Ride) -> Ride:
        """Persist a new ride whose code has been reserved."""
        await self.state.set(self._ride_key(ride.id), ride.model_dump(mode="json"))
        await self.state.zadd(
            self._history_key(ride.requester_id),
            {str(ride.id): ride.requested_at.timestamp()},
        )

        logger.info(
            "ride_created",
            ride_id=ride.ride_id,
            requester_id=ride.requester_id,
            vehicle_class=ride.vehicle_class.value,
        )
        return ride

    async def get_ride(self, ride_pk: UUID) -> Ride | None:
        """Retrieve a ride by storage key."""
        data = await self.state.get(self._ride_key(ride_pk))
        if not data:
            return None
        return Ride(**data)

    async def resolve_ride_code(self, ride_id: str) -> UUID | None:
        """Map a public ride code to its storage key."""
        value = await self.state.get(self._ride_code_key(ride_id))
        if not value:
            return None
        return UUID(str(value))

    async def get_ride_by_code(self, ride_id: str) -> Ride | None:
        """Retrieve a ride by its public code."""
        ride_pk = await self.resolve_ride_code(ride_id)
        if ride_pk is None:
            return None
        return await self.get_ride(ride_pk)

    async def list_rides_for_requester(self, requester_id: str, limit: int = 50) -> list[Ride]:
        """Rides of one requester, newest first."""
        members = await self.state.zrevrange(self._history_key(requester_id), 0, limit - 1)

        rides = []
        for member in members:
            ride = await self.get_ride(UUID(member))
            if ride:
                rides.append(ride)
        return rides

    # Drivers

    async def save_driver(self, driver: Driver) -> Driver:
        """Persist a driver record unconditionally (registration and seeding)."""
        await self.state.set(self._driver_key(driver.id), driver.model_dump(mode="json"))
        await self.state.set(self._driver_user_key(driver.user_id), str(driver.id))
        await self.index_driver(driver)
        return driver

    async def get_driver(self, driver_id: UUID) -> Driver | None:
        """Retrieve a driver by ID."""
        data = await self.state.get(self._driver_key(driver_id))
        if not data:
            return None
        return Driver(**data)

    async def get_driver_by_user(self, user_id: str) -> Driver | None:
        """Retrieve the driver owned by an account."""
        value = await self.state.get(self._driver_user_key(user_id))
        if not value:
            return None
        return await self.get_driver(UUID(str(value)))

    async def index_driver(self, driver: Driver) -> None:
        """Keep the geo index in step with a driver's online state and position."""
        key = self._geo_key(driver.vehicle_class)
        if driver.is_online and driver.location is not None:
            await self.state.geoadd(key, driver.location.lng, driver.location.lat, str(driver.id))
        else:
            await self.state.zrem(key, str(driver.id))

    async def find_nearby_drivers(
        self,
        location: Location,
        radius_m: float,
        vehicle_class: VehicleClass | None = None,
        limit: int = 10,
    ) -> list[tuple[Driver, float]]:
        """
        Dispatchable drivers around a point.

        The geo index only narrows the search; online and availability flags
        are read from each driver record.

        Returns:
            (driver, distance in meters) pairs, nearest first
        """
        classes = [vehicle_class] if vehicle_class else list(VehicleClass)

        hits: list[tuple[str, float]] = []
        for cls in classes:
            hits.extend(
                await self.state.geosearch(
                    self._geo_key(cls), location.lng, location.lat, radius_m
                )
            )
        hits.sort(key=lambda hit: hit[1])

        drivers = []
        for member, distance in hits:
            driver = await self.get_driver(UUID(member))
            if driver is None or not driver.is_dispatchable:
                continue
            if vehicle_class and driver.vehicle_class != vehicle_class:
                continue
            drivers.append((driver, distance))
            if len(drivers) >= limit:
                break

        return drivers

    # Users

    async def save_user(self, user: User) -> User:
        await self.state.set(self._user_key(user.id), user.model_dump(mode="json"))
        return user

    async def get_user(self, user_id: str) -> User | None:
        data = await self.state.get(self._user_key(user_id))
        if not data:
            return None
        return User(**data)

    # Conditional updates

    async def transact(
        self,
        refs: list[tuple[type[BaseModel], UUID]],
        apply: RecordsFn,
    ) -> list[BaseModel] | None:
        """
        Atomically read several records and write back what ``apply`` returns.

        Args:
            refs: (model class, id) of every record involved
            apply: Decision over the loaded records

        Returns:
            The records written, or None if nothing was written
        """
        keys = []
        for model_cls, entity_id in refs:
            if model_cls is Ride:
                keys.append(self._ride_key(entity_id))
            elif model_cls is Driver:
                keys.append(self._driver_key(entity_id))
            else:
                raise TypeError(f"Unsupported record type {model_cls.__name__}")

        written: list[BaseModel] = []

        def decide(current: list[Any]) -> dict[str, Any] | None:
            records = [
                model_cls(**data) if data else None
                for (model_cls, _), data in zip(refs, current)
            ]
            updated = apply(records)
            written.clear()
            if updated is None:
                return None
            written.extend(updated)
            return {self.key_for(record): record.model_dump(mode="json") for record in updated}

        result = await self.state.transaction(keys, decide)
        if result is None:
            return None
        return list(written)

    async def update_if(
        self,
        model_cls: type[M],
        entity_id: UUID,
        predicate: Callable[[M], bool],
        mutation: Callable[[M], None],
    ) -> M | None:
        """
        Apply ``mutation`` only if ``predicate`` holds on the current record.

        Raises:
            NotFoundError: If the record does not exist

        Returns:
            The updated record, or None if the predicate was false
        """

        def apply(records: list[Any]) -> list[BaseModel] | None:
            record = records[0]
            if record is None:
                raise NotFoundError(f"{model_cls.__name__} {entity_id} not found")
            if not predicate(record):
                return None
            mutation(record)
            return [record]

        written = await self.transact([(model_cls, entity_id)], apply)
        if written is None:
            return None
        return written[0]
