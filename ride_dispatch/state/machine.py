"""Ride lifecycle state machine."""

from datetime import datetime

from ride_dispatch.errors import InvalidTransitionError
from ride_dispatch.models.ride import Cancellation, CancelledBy, Ride, RideStatus


class RideTransitions:
    """Valid ride status transitions."""

    TRANSITIONS = {
        RideStatus.REQUESTED: [RideStatus.ACCEPTED, RideStatus.CANCELLED],
        RideStatus.ACCEPTED: [
            RideStatus.ARRIVING,
            RideStatus.ARRIVED,
            RideStatus.STARTED,
            RideStatus.CANCELLED,
        ],
        RideStatus.ARRIVING: [
            RideStatus.ARRIVED,
            RideStatus.STARTED,
            RideStatus.CANCELLED,
        ],
        RideStatus.ARRIVED: [RideStatus.STARTED, RideStatus.CANCELLED],
        RideStatus.STARTED: [RideStatus.COMPLETED, RideStatus.CANCELLED],
        RideStatus.COMPLETED: [],
        RideStatus.CANCELLED: [],
    }

    @classmethod
    def can_transition(cls, from_state: RideStatus, to_state: RideStatus) -> bool:
        """Check if a state transition is valid."""
        return to_state in cls.TRANSITIONS.get(from_state, [])


def _ensure(ride: Ride, target: RideStatus) -> None:
    if not RideTransitions.can_transition(ride.status, target):
        raise InvalidTransitionError(
            f"Ride {ride.ride_id} cannot move from {ride.status.value} to {target.value}",
            ride_id=ride.ride_id,
            status=ride.status.value,
            target=target.value,
        )


def apply_transition(ride: Ride, target: RideStatus, now: datetime) -> RideStatus:
    """
    Move a ride to a driver-initiated status and stamp the matching timestamps.

    Acceptance and cancellation have their own entry points because they
    carry extra data; asking for them here is rejected.

    Returns:
        The status the ride was in before the transition
    """
    if target in (RideStatus.ACCEPTED, RideStatus.CANCELLED, RideStatus.REQUESTED):
        raise InvalidTransitionError(
            f"{target.value} cannot be set through a status update",
            ride_id=ride.ride_id,
            target=target.value,
        )

    _ensure(ride, target)
    if ride.driver_id is None:
        raise InvalidTransitionError(
            f"Ride {ride.ride_id} has no driver assigned", ride_id=ride.ride_id
        )

    previous = ride.status
    ride.status = target

    if target == RideStatus.ARRIVED:
        ride.pickup.arrived_at = now
    elif target == RideStatus.STARTED:
        ride.started_at = now
    elif target == RideStatus.COMPLETED:
        ride.completed_at = now
        ride.drop.reached_at = now
        if ride.started_at:
            ride.actual_duration_s = int((now - ride.started_at).total_seconds())

    return previous


def apply_acceptance(ride: Ride, driver_id, now: datetime) -> None:
    """Bind a driver to a requested ride."""
    _ensure(ride, RideStatus.ACCEPTED)
    ride.driver_id = driver_id
    ride.status = RideStatus.ACCEPTED
    ride.accepted_at = now


def apply_cancellation(ride: Ride, by: CancelledBy, reason: str, now: datetime) -> RideStatus:
    """Cancel a non-terminal ride; terminal rides raise InvalidTransitionError."""
    _ensure(ride, RideStatus.CANCELLED)
    previous = ride.status
    ride.status = RideStatus.CANCELLED
    ride.cancelled_at = now
    ride.cancellation = Cancellation(by=by, reason=reason, cancelled_at=now)
    return previous
