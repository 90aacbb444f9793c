"""Ride-related data models."""

import secrets
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ride_dispatch.models.driver import Location, VehicleClass


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def generate_ride_code(now: datetime | None = None) -> str:
    """Human-shareable ride identifier, e.g. RIDE1718000000000417."""
    now = now or utcnow()
    return f"RIDE{int(now.timestamp() * 1000)}{secrets.randbelow(1000)}"


def generate_otp() -> str:
    """Four digit pickup verification code."""
    return str(1000 + secrets.randbelow(9000))


class RideStatus(str, Enum):
    """Ride status progression."""

    REQUESTED = "requested"
    ACCEPTED = "accepted"
    ARRIVING = "arriving"
    ARRIVED = "arrived"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CancelledBy(str, Enum):
    """Party that cancelled a ride."""

    REQUESTER = "requester"
    DRIVER = "driver"
    SYSTEM = "system"


class Place(BaseModel):
    """Address plus coordinate."""

    address: str = Field(min_length=1)
    location: Location


class Pickup(Place):
    arrived_at: datetime | None = None


class Drop(Place):
    reached_at: datetime | None = None


class FareTerms(BaseModel):
    """Fare breakdown frozen at request time."""

    base_fare: float = Field(default=20.0, ge=0)
    distance_fare: float = Field(default=0.0, ge=0)
    time_fare: float = Field(default=0.0, ge=0)
    surge_fare: float = Field(default=0.0, ge=0)
    discount: float = Field(default=0.0, ge=0)
    total: float = Field(ge=0)
    currency: str = "INR"


class RideOffer(BaseModel):
    """Offer sent to one candidate driver."""

    driver_id: UUID
    priority: int = Field(ge=1)
    distance_m: float
    expires_at: datetime


class RoutePoint(BaseModel):
    """Location sample recorded while a driver is bound to the ride."""

    location: Location
    timestamp: datetime


class Cancellation(BaseModel):
    by: CancelledBy
    reason: str
    cancelled_at: datetime


class Rating(BaseModel):
    rating: int = Field(ge=1, le=5)
    review: str = ""
    rated_at: datetime


class SafetyAlert(BaseModel):
    triggered: bool = False
    triggered_at: datetime | None = None
    triggered_by: str | None = None
    contacts: list[str] = Field(default_factory=list)


class Ride(BaseModel):
    """Complete ride record."""

    id: UUID = Field(default_factory=uuid4)
    ride_id: str = Field(default_factory=generate_ride_code)

    # Parties
    requester_id: str
    driver_id: UUID | None = None

    # Endpoints
    pickup: Pickup
    drop: Drop
    distance_km: float | None = Field(default=None, ge=0)
    duration_min: float | None = Field(default=None, ge=0)

    # Commercial terms
    fare: FareTerms
    vehicle_class: VehicleClass = VehicleClass.AUTO

    status: RideStatus = RideStatus.REQUESTED

    # Timing
    requested_at: datetime = Field(default_factory=utcnow)
    accepted_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    actual_duration_s: int | None = None

    otp: str = Field(default_factory=generate_otp)

    # Offers
    offers: list[RideOffer] = Field(default_factory=list)
    offer_expires_at: datetime | None = None

    route: list[RoutePoint] = Field(default_factory=list)
    cancellation: Cancellation | None = None
    requester_rating: Rating | None = None
    sos: SafetyAlert = Field(default_factory=SafetyAlert)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RideStatus.COMPLETED, RideStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        """Driver is bound and the trip is not over."""
        return self.driver_id is not None and not self.is_terminal
