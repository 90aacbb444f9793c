"""Live Telemetry Relay - Driver positions to requesters and the ambient map."""

import asyncio
from datetime import timedelta
from typing import Any
from uuid import UUID
from weakref import WeakValueDictionary

from pydantic import BaseModel

from ride_dispatch.config import Settings, get_settings
from ride_dispatch.errors import NotFoundError
from ride_dispatch.models.driver import Driver, Location
from ride_dispatch.models.events import DriverLocationUpdate, DriverMoved
from ride_dispatch.models.ride import Ride, RoutePoint, utcnow
from ride_dispatch.realtime.bus import EventBus
from ride_dispatch.realtime.sessions import TOPIC_ALL, identity_topic
from ride_dispatch.services.dispatch import Clock, coerce
from ride_dispatch.state.store import EntityStore
from ride_dispatch.utils.logging import get_logger

logger = get_logger(__name__)


class LocationReport(BaseModel):
    """Outcome of one location report."""

    driver_id: UUID
    location: Location
    applied: bool
    ride_id: str | None = None


class TelemetryRelay:
    """
    Stores driver positions and relays them.

    Reports from one driver are serialized per instance, and the store only
    accepts a report at least as new as the one it holds, so a delayed
    duplicate can never move a driver backwards.
    """

    def __init__(
        self,
        store: EntityStore,
        bus: EventBus,
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.bus = bus
        self.settings = settings or get_settings()
        self.clock = clock
        self._locks: WeakValueDictionary[UUID, asyncio.Lock] = WeakValueDictionary()

    def _lock_for(self, driver_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(driver_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[driver_id] = lock
        return lock

    async def report_location(
        self,
        driver_id: UUID,
        location: Location | dict[str, Any],
    ) -> LocationReport:
        """
        Record a driver's position and relay it.

        Args:
            driver_id: Reporting driver
            location: New coordinate

        Returns:
            Whether the report was applied and which ride trail it extended

        Raises:
            ValidationError: If the coordinate is malformed
            NotFoundError: If the driver does not exist
        """
        location = coerce(Location, location, "location")
        min_interval = timedelta(milliseconds=self.settings.location_min_interval_ms)

        async with self._lock_for(driver_id):
            now = self.clock()

            def is_newer(driver: Driver) -> bool:
                last = driver.location_updated_at
                if last is None:
                    return True
                if now < last:
                    return False
                return not min_interval or now - last >= min_interval

            def move(driver: Driver) -> None:
                driver.location = location
                driver.location_updated_at = now

            driver = await self.store.update_if(Driver, driver_id, is_newer, move)
            if driver is None:
                logger.debug("location_report_dropped", driver_id=str(driver_id))
                return LocationReport(driver_id=driver_id, location=location, applied=False)

            await self.store.index_driver(driver)

            ride = None
            if driver.current_ride is not None:
                ride = await self._append_route(driver, location, now)

            if ride is not None:
                await self.bus.publish(
                    identity_topic(ride.requester_id),
                    DriverLocationUpdate(ride_id=ride.ride_id, location=location, timestamp=now),
                )

            await self.bus.publish(
                TOPIC_ALL,
                DriverMoved(location=location, vehicle_class=driver.vehicle_class, timestamp=now),
            )

        return LocationReport(
            driver_id=driver_id,
            location=location,
            applied=True,
            ride_id=ride.ride_id if ride else None,
        )

    async def _append_route(self, driver: Driver, location: Location, now) -> Ride | None:
        """Add a trail sample if the driver is still bound to an active ride."""

        def append(ride: Ride) -> None:
            ride.route.append(RoutePoint(location=location, timestamp=now))

        try:
            return await self.store.update_if(
                Ride,
                driver.current_ride,
                lambda ride: ride.driver_id == driver.id and ride.is_active,
                append,
            )
        except NotFoundError:
            logger.warning(
                "current_ride_missing",
                driver_id=str(driver.id),
                ride_pk=str(driver.current_ride),
            )
            return None
