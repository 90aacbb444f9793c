"""Safety escalation to the operations channel."""

from ride_dispatch.errors import NotFoundError
from ride_dispatch.models.events import SosAlertRaised
from ride_dispatch.models.ride import Ride, SafetyAlert, utcnow
from ride_dispatch.realtime.bus import EventBus
from ride_dispatch.realtime.sessions import TOPIC_ADMIN
from ride_dispatch.services.dispatch import Clock
from ride_dispatch.state.store import EntityStore
from ride_dispatch.utils.logging import get_logger

logger = get_logger(__name__)


class SafetyService:
    """Raises SOS alerts. Delivery is fire-and-forget; nothing is retried."""

    def __init__(self, store: EntityStore, bus: EventBus, clock: Clock = utcnow):
        self.store = store
        self.bus = bus
        self.clock = clock

    async def trigger_safety_alert(
        self,
        ride_id: str,
        triggered_by: str,
        contacts: list[str] | None = None,
    ) -> Ride:
        """
        Flag a ride and alert the safety desk.

        Args:
            ride_id: Public ride code
            triggered_by: Identity that raised the alert
            contacts: Emergency contacts notified by the caller

        Raises:
            NotFoundError: If the ride does not exist
        """
        ride_pk = await self.store.resolve_ride_code(ride_id)
        if ride_pk is None:
            raise NotFoundError(f"Ride {ride_id} not found", ride_id=ride_id)

        now = self.clock()

        def flag(ride: Ride) -> None:
            ride.sos = SafetyAlert(
                triggered=True,
                triggered_at=now,
                triggered_by=triggered_by,
                contacts=contacts or [],
            )

        ride = await self.store.update_if(Ride, ride_pk, lambda _: True, flag)

        await self.bus.publish(
            TOPIC_ADMIN,
            SosAlertRaised(
                ride_id=ride.ride_id,
                requester_id=ride.requester_id,
                driver_id=str(ride.driver_id) if ride.driver_id else None,
                location=ride.pickup.location,
                triggered_by=triggered_by,
                timestamp=now,
            ),
        )

        logger.critical(
            "sos_alert",
            ride_id=ride.ride_id,
            triggered_by=triggered_by,
            driver_id=str(ride.driver_id) if ride.driver_id else None,
        )
        return ride
