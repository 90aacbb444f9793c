"""Ride lifecycle - status progression, cancellation, rating and lookups."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel

from ride_dispatch.config import Settings, get_settings
from ride_dispatch.errors import (
    AlreadyRatedError,
    AuthError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ride_dispatch.models.driver import Driver
from ride_dispatch.models.events import RideCancelled, RideStatusUpdate, RideStatusUpdateConfirmed
from ride_dispatch.models.ride import CancelledBy, Rating, Ride, RideStatus, utcnow
from ride_dispatch.realtime.bus import EventBus
from ride_dispatch.realtime.sessions import TOPIC_DRIVERS, identity_topic
from ride_dispatch.services.dispatch import Clock
from ride_dispatch.state.machine import apply_cancellation, apply_transition
from ride_dispatch.state.store import EntityStore
from ride_dispatch.utils.logging import RideAuditLogger, get_logger

logger = get_logger(__name__)

DEFAULT_CANCEL_REASONS = {
    CancelledBy.REQUESTER: "Requester cancelled",
    CancelledBy.DRIVER: "Driver cancelled",
    CancelledBy.SYSTEM: "Cancelled by operations",
}


class _DriverChanged(Exception):
    """The ride gained a driver between the snapshot and the transaction."""


def release_driver(driver: Driver, ride: Ride) -> bool:
    """Free a driver still bound to this ride."""
    if driver.current_ride != ride.id:
        return False
    driver.is_available = True
    driver.current_ride = None
    return True


class RideLifecycle:
    """Drives a matched ride to completion or cancellation."""

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
        self.audit = RideAuditLogger("ride_lifecycle")

    async def get_ride(self, ride_id: str) -> Ride:
        """Get a ride by public code."""
        ride = await self.store.get_ride_by_code(ride_id)
        if ride is None:
            raise NotFoundError(f"Ride {ride_id} not found", ride_id=ride_id)
        return ride

    async def list_ride_history(self, requester_id: str, limit: int | None = None) -> list[Ride]:
        """Rides of a requester, newest first."""
        return await self.store.list_rides_for_requester(
            requester_id, limit=limit or self.settings.ride_history_limit
        )

    async def advance_status(
        self,
        driver_id: UUID,
        ride_id: str,
        status: RideStatus | str,
        otp: str | None = None,
    ) -> Ride:
        """
        Move a ride forward on behalf of its assigned driver.

        Completing the ride releases the driver and credits the frozen fare
        in the same write.

        Args:
            driver_id: Driver reporting the change
            ride_id: Public ride code
            status: arriving, arrived, started or completed
            otp: Pickup code read out by the requester, checked when starting

        Raises:
            NotFoundError: If the ride does not exist
            AuthError: If the driver is not the one assigned to the ride
            InvalidTransitionError: If the ride cannot move to ``status``
        """
        try:
            status = RideStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown ride status {status!r}") from e

        driver_id = UUID(str(driver_id))
        ride_pk = await self.store.resolve_ride_code(ride_id)
        if ride_pk is None:
            raise NotFoundError(f"Ride {ride_id} not found", ride_id=ride_id)

        now = self.clock()
        previous: dict[str, RideStatus] = {}

        def decide(records: list[Any]) -> list[BaseModel]:
            ride, driver = records
            if ride is None:
                raise NotFoundError(f"Ride {ride_id} not found", ride_id=ride_id)
            if ride.driver_id != driver_id:
                raise AuthError("Only the assigned driver can update this ride", ride_id=ride_id)
            if status == RideStatus.STARTED and otp is not None and otp != ride.otp:
                raise ValidationError("Pickup code does not match", ride_id=ride_id)

            previous["status"] = apply_transition(ride, status, now)

            if status == RideStatus.COMPLETED and driver is not None:
                if release_driver(driver, ride):
                    driver.total_rides += 1
                    driver.total_earnings += ride.fare.total
                return [ride, driver]
            return [ride]

        written = await self.store.transact([(Ride, ride_pk), (Driver, driver_id)], decide)
        ride = written[0]

        self.audit.log_transition(
            ride.ride_id,
            previous["status"].value,
            ride.status.value,
            actor=f"driver:{driver_id}",
        )

        await self.bus.publish(
            identity_topic(ride.requester_id),
            RideStatusUpdate(ride_id=ride.ride_id, status=ride.status),
        )

        driver = await self.store.get_driver(driver_id)
        if driver:
            await self.bus.publish(
                identity_topic(driver.user_id),
                RideStatusUpdateConfirmed(ride_id=ride.ride_id, status=ride.status),
            )

        return ride

    async def cancel_ride(
        self,
        ride_id: str,
        by: CancelledBy | str,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> Ride:
        """
        Cancel a ride that has not finished.

        Args:
            ride_id: Public ride code
            by: requester, driver or system
            reason: Free-text reason
            actor_id: Requester identity or driver id to check ownership against

        Raises:
            NotFoundError: If the ride does not exist
            AuthError: If the actor is not a party to the ride
            InvalidTransitionError: If the ride is already completed or cancelled
        """
        try:
            by = CancelledBy(by)
        except ValueError as e:
            raise ValidationError(f"Unknown cancelling party {by!r}") from e

        reason = reason or DEFAULT_CANCEL_REASONS[by]
        now = self.clock()

        while True:
            snapshot = await self.get_ride(ride_id)
            refs: list[tuple[type[BaseModel], UUID]] = [(Ride, snapshot.id)]
            if snapshot.driver_id is not None:
                refs.append((Driver, snapshot.driver_id))

            previous: dict[str, RideStatus] = {}

            def decide(records: list[Any]) -> list[BaseModel]:
                ride = records[0]
                if ride is None:
                    raise NotFoundError(f"Ride {ride_id} not found", ride_id=ride_id)
                if ride.driver_id != snapshot.driver_id:
                    raise _DriverChanged()
                self._check_party(ride, by, actor_id)

                previous["status"] = apply_cancellation(ride, by, reason, now)

                driver = records[1] if len(records) > 1 else None
                if driver is not None and release_driver(driver, ride):
                    return [ride, driver]
                return [ride]

            try:
                written = await self.store.transact(refs, decide)
                break
            except _DriverChanged:
                logger.debug("cancel_retry_driver_assigned", ride_id=ride_id)

        ride = written[0]
        self.audit.log_transition(
            ride.ride_id,
            previous["status"].value,
            ride.status.value,
            actor=f"{by.value}:{actor_id}" if actor_id else by.value,
            reason=reason,
        )

        cancelled = RideCancelled(ride_id=ride.ride_id, by=by, reason=reason)
        if ride.driver_id is not None:
            driver = await self.store.get_driver(ride.driver_id)
            if driver:
                await self.bus.publish(identity_topic(driver.user_id), cancelled)
        elif previous["status"] == RideStatus.REQUESTED and ride.offers:
            # Withdraw the outstanding offers
            await self.bus.publish(TOPIC_DRIVERS, cancelled)

        await self.bus.publish(
            identity_topic(ride.requester_id),
            RideStatusUpdate(ride_id=ride.ride_id, status=ride.status),
        )

        return ride

    @staticmethod
    def _check_party(ride: Ride, by: CancelledBy, actor_id: str | None) -> None:
        if actor_id is None or by == CancelledBy.SYSTEM:
            return
        if by == CancelledBy.REQUESTER and actor_id != ride.requester_id:
            raise AuthError("Only the requester can cancel this ride", ride_id=ride.ride_id)
        if by == CancelledBy.DRIVER and actor_id != str(ride.driver_id):
            raise AuthError("Only the assigned driver can cancel this ride", ride_id=ride.ride_id)

    async def rate_ride(
        self,
        ride_id: str,
        rating: int,
        review: str | None = None,
        requester_id: str | None = None,
    ) -> Ride:
        """
        Record the requester's single rating of a completed ride.

        Raises:
            ValidationError: If the rating is not an integer from 1 to 5
            NotFoundError: If the ride does not exist
            AuthError: If ``requester_id`` is given and does not own the ride
            InvalidStateError: If the ride is not completed
            AlreadyRatedError: If the ride was rated before
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", rating=rating)

        snapshot = await self.get_ride(ride_id)
        if requester_id is not None and requester_id != snapshot.requester_id:
            raise AuthError("Only the requester can rate this ride", ride_id=ride_id)
        if snapshot.driver_id is None:
            raise InvalidStateError("Can only rate completed rides", ride_id=ride_id)

        now = self.clock()

        def decide(records: list[Any]) -> list[BaseModel]:
            ride, driver = records
            if ride.status != RideStatus.COMPLETED:
                raise InvalidStateError(
                    "Can only rate completed rides", ride_id=ride_id, status=ride.status.value
                )
            if ride.requester_rating is not None:
                raise AlreadyRatedError("This ride has already been rated", ride_id=ride_id)

            ride.requester_rating = Rating(rating=rating, review=review or "", rated_at=now)
            if driver is None:
                return [ride]
            driver.add_rating(rating)
            return [ride, driver]

        written = await self.store.transact(
            [(Ride, snapshot.id), (Driver, snapshot.driver_id)], decide
        )

        logger.info("ride_rated", ride_id=ride_id, rating=rating)
        return written[0]
