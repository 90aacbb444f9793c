"""Dispatch Engine - Matches requested rides to nearby drivers."""

import time
from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ride_dispatch.config import Settings, get_settings
from ride_dispatch.errors import (
    AlreadyTakenError,
    DispatchError,
    DriverUnavailableError,
    InvalidStateError,
    NotFoundError,
    OfferExpiredError,
    ValidationError,
)
from ride_dispatch.models.driver import Driver, Location, VehicleClass
from ride_dispatch.models.events import (
    NewRideRequest,
    RideAccepted,
    RideAcceptConfirmed,
    RideRequestBroadcast,
    RideRequested,
    RideTaken,
)
from ride_dispatch.models.ride import (
    Drop,
    FareTerms,
    Pickup,
    Place,
    Ride,
    RideOffer,
    RideStatus,
    generate_ride_code,
    utcnow,
)
from ride_dispatch.realtime.bus import EventBus
from ride_dispatch.realtime.sessions import TOPIC_DRIVERS, identity_topic
from ride_dispatch.state.machine import apply_acceptance
from ride_dispatch.state.store import EntityStore
from ride_dispatch.utils.logging import RideAuditLogger, get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]

RIDE_CODE_ATTEMPTS = 5


class RideRequestResult(BaseModel):
    """Created ride and how many drivers were offered it."""

    ride: Ride
    candidates_notified: int


class AcceptResult(BaseModel):
    """Ride and driver as written by a winning acceptance."""

    ride: Ride
    driver: Driver


def describe_errors(error: PydanticValidationError, what: str) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or what}: {err['msg']}"
        for err in error.errors()
    ]


def coerce(model_cls: type[BaseModel], value: Any, what: str) -> Any:
    """Validate caller input into a model, raising the dispatch ValidationError."""
    if isinstance(value, BaseModel):
        value = value.model_dump()
    try:
        return model_cls.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {what}", problems=describe_errors(e, what)) from e


class DispatchEngine:
    """
    Finds candidate drivers for new rides and resolves the acceptance race.

    Offers go out to every candidate at once; whoever's conditional write
    lands first gets the ride and everyone else is told it is taken.
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
        self.audit = RideAuditLogger("dispatch_engine")

    async def request_ride(
        self,
        requester_id: str,
        pickup: Place | dict[str, Any],
        drop: Place | dict[str, Any],
        fare: FareTerms | dict[str, Any],
        vehicle_class: VehicleClass | str = VehicleClass.AUTO,
        distance_km: float | None = None,
        duration_min: float | None = None,
    ) -> RideRequestResult:
        """
        Create a ride and offer it to the nearest available drivers.

        Args:
            requester_id: Authenticated requester identity
            pickup: Pickup address and coordinate
            drop: Drop address and coordinate
            fare: Fare breakdown, frozen from here on
            vehicle_class: Vehicle class to dispatch
            distance_km: Route distance estimate
            duration_min: Route duration estimate

        Returns:
            The created ride and the number of drivers offered it

        Raises:
            ValidationError: If coordinates or fare terms are missing or malformed
        """
        start_time = time.time()
        now = self.clock()

        if not requester_id:
            raise ValidationError("Requester is required")

        try:
            vehicle_class = VehicleClass(vehicle_class)
        except ValueError as e:
            raise ValidationError(f"Unknown vehicle class {vehicle_class!r}") from e

        pickup = coerce(Pickup, pickup, "pickup")
        drop = coerce(Drop, drop, "drop")
        fare = coerce(FareTerms, fare, "fare")
        try:
            ride = Ride(
                requester_id=requester_id,
                pickup=pickup,
                drop=drop,
                fare=fare,
                vehicle_class=vehicle_class,
                distance_km=distance_km,
                duration_min=duration_min,
                requested_at=now,
                offer_expires_at=now + timedelta(seconds=self.settings.offer_window_seconds),
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid ride request", problems=describe_errors(e, "ride")) from e
        ride = await self._persist_new_ride(ride)

        candidates = await self.store.find_nearby_drivers(
            ride.pickup.location,
            self.settings.dispatch_radius_m,
            vehicle_class=ride.vehicle_class,
            limit=self.settings.dispatch_fanout_limit,
        )

        if candidates:
            ride = await self._record_offers(ride, candidates)

        for offer in ride.offers:
            driver = next(d for d, _ in candidates if d.id == offer.driver_id)
            await self.bus.publish(
                identity_topic(driver.user_id),
                NewRideRequest(
                    ride_id=ride.ride_id,
                    pickup=Place(address=ride.pickup.address, location=ride.pickup.location),
                    drop=Place(address=ride.drop.address, location=ride.drop.location),
                    fare=ride.fare.total,
                    distance_km=ride.distance_km,
                    duration_min=ride.duration_min,
                    vehicle_class=ride.vehicle_class,
                    priority=offer.priority,
                    distance_to_pickup_m=round(offer.distance_m, 1),
                    expires_in_s=self.settings.offer_window_seconds,
                    expires_at=offer.expires_at,
                ),
            )

        notified = len(ride.offers)
        if notified:
            await self.bus.publish(
                TOPIC_DRIVERS,
                RideRequestBroadcast(
                    ride_id=ride.ride_id,
                    pickup=ride.pickup.address,
                    fare=ride.fare.total,
                    drivers_notified=notified,
                ),
            )
        else:
            logger.warning("no_drivers_available", ride_id=ride.ride_id)

        await self.bus.publish(
            identity_topic(ride.requester_id),
            RideRequested(
                ride_id=ride.ride_id,
                status=ride.status,
                candidates_notified=notified,
                otp=ride.otp,
            ),
        )

        self.audit.log_offers(
            ride.ride_id,
            candidates=notified,
            duration_ms=(time.time() - start_time) * 1000,
        )

        return RideRequestResult(ride=ride, candidates_notified=notified)

    async def _persist_new_ride(self, ride: Ride) -> Ride:
        """Reserve a unique public code and store the ride."""
        for _ in range(RIDE_CODE_ATTEMPTS):
            if await self.store.reserve_ride_code(ride):
                return await self.store.create_ride(ride)
            ride.ride_id = generate_ride_code()

        raise ValidationError("Could not allocate a ride identifier, retry the request")

    async def _record_offers(
        self,
        ride: Ride,
        candidates: list[tuple[Driver, float]],
    ) -> Ride:
        """Store the ranked offers; none are kept if the ride left requested meanwhile."""
        offers = [
            RideOffer(
                driver_id=driver.id,
                priority=priority,
                distance_m=distance,
                expires_at=ride.offer_expires_at,
            )
            for priority, (driver, distance) in enumerate(candidates, start=1)
        ]

        def record(current: Ride) -> None:
            current.offers = offers

        updated = await self.store.update_if(
            Ride,
            ride.id,
            lambda current: current.status == RideStatus.REQUESTED and current.driver_id is None,
            record,
        )
        if updated is None:
            logger.info("offers_skipped", ride_id=ride.ride_id, reason="ride_no_longer_requested")
            return await self.store.get_ride(ride.id) or ride
        return updated

    async def accept_offer(self, driver_id: UUID, ride_id: str) -> AcceptResult:
        """
        Try to claim a ride for a driver; the first conditional write wins.

        Args:
            driver_id: Driver attempting the acceptance
            ride_id: Public ride code from the offer

        Returns:
            The assigned ride and the updated driver

        Raises:
            NotFoundError: If the driver or ride does not exist
            DriverUnavailableError: If the driver is already bound to a ride
            AlreadyTakenError: If another driver already holds the ride
            InvalidStateError: If the ride is no longer requested
            OfferExpiredError: If the acceptance window has closed
        """
        try:
            result = await self._claim(driver_id, ride_id)
        except DispatchError as e:
            self.audit.log_rejection(ride_id, str(driver_id), reason=e.code)
            raise

        ride, driver = result.ride, result.driver
        self.audit.log_transition(
            ride.ride_id,
            RideStatus.REQUESTED.value,
            RideStatus.ACCEPTED.value,
            actor=f"driver:{driver.id}",
        )

        await self.bus.publish(
            identity_topic(ride.requester_id),
            RideAccepted(ride_id=ride.ride_id, driver=driver.public_profile(), otp=ride.otp),
        )
        await self.bus.publish(
            TOPIC_DRIVERS,
            RideTaken(ride_id=ride.ride_id),
            exclude=[driver.user_id],
        )

        requester = await self.store.get_user(ride.requester_id)
        await self.bus.publish(
            identity_topic(driver.user_id),
            RideAcceptConfirmed(
                ride_id=ride.ride_id,
                pickup=Place(address=ride.pickup.address, location=ride.pickup.location),
                drop=Place(address=ride.drop.address, location=ride.drop.location),
                fare=ride.fare.total,
                otp=ride.otp,
                requester_name=requester.name if requester else None,
                requester_phone=requester.phone if requester else None,
            ),
        )

        return result

    async def _claim(self, driver_id: UUID, ride_id: str) -> AcceptResult:
        now = self.clock()
        ride_pk = await self.store.resolve_ride_code(ride_id)

        if ride_pk is None:
            driver = await self.store.get_driver(driver_id)
            self._check_driver(driver, driver_id)
            raise NotFoundError(f"Ride {ride_id} not found", ride_id=ride_id)

        def decide(records: list[Any]) -> list[BaseModel]:
            driver, ride = records
            self._check_driver(driver, driver_id)
            if ride is None:
                raise NotFoundError(f"Ride {ride_id} not found", ride_id=ride_id)
            if ride.driver_id is not None:
                raise AlreadyTakenError(
                    "Another driver already accepted this ride", ride_id=ride_id
                )
            if ride.status != RideStatus.REQUESTED:
                raise InvalidStateError(
                    f"Ride is {ride.status.value} and can no longer be accepted",
                    ride_id=ride_id,
                    status=ride.status.value,
                )
            if (
                self.settings.enforce_offer_expiry
                and ride.offer_expires_at is not None
                and now > ride.offer_expires_at
            ):
                raise OfferExpiredError("The offer for this ride has expired", ride_id=ride_id)

            apply_acceptance(ride, driver.id, now)
            driver.is_available = False
            driver.current_ride = ride.id
            return [ride, driver]

        written = await self.store.transact([(Driver, driver_id), (Ride, ride_pk)], decide)
        driver, ride = written[1], written[0]
        return AcceptResult(ride=ride, driver=driver)

    @staticmethod
    def _check_driver(driver: Driver | None, driver_id: UUID) -> Driver:
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found", driver_id=str(driver_id))
        if not driver.is_available or driver.current_ride is not None:
            raise DriverUnavailableError(
                "Driver is not available to accept rides", driver_id=str(driver_id)
            )
        return driver

    async def query_nearby_drivers(
        self,
        location: Location | dict[str, Any],
        radius_m: float | None = None,
        vehicle_class: VehicleClass | str | None = None,
        limit: int | None = None,
    ) -> list[Driver]:
        """Online, available drivers around a point, nearest first."""
        location = coerce(Location, location, "location")
        radius_m = self.settings.dispatch_radius_m if radius_m is None else radius_m
        if radius_m <= 0:
            raise ValidationError("Radius must be positive", radius_m=radius_m)

        if vehicle_class is not None:
            try:
                vehicle_class = VehicleClass(vehicle_class)
            except ValueError as e:
                raise ValidationError(f"Unknown vehicle class {vehicle_class!r}") from e

        nearby = await self.store.find_nearby_drivers(
            location,
            radius_m,
            vehicle_class=vehicle_class,
            limit=limit or self.settings.nearby_drivers_limit,
        )
        return [driver for driver, _ in nearby]

    async def get_driver(self, driver_id: UUID) -> Driver:
        driver = await self.store.get_driver(driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found", driver_id=str(driver_id))
        return driver

    async def set_driver_online(self, driver_id: UUID, online: bool) -> Driver:
        """Toggle whether a driver receives offers."""

        def toggle(driver: Driver) -> None:
            driver.is_online = online

        driver = await self.store.update_if(Driver, driver_id, lambda _: True, toggle)
        await self.store.index_driver(driver)

        logger.info("driver_online_changed", driver_id=str(driver_id), online=online)
        return driver
