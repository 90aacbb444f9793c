"""Tagged message variants exchanged over live sessions."""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ride_dispatch.models.driver import Location, VehicleClass
from ride_dispatch.models.ride import CancelledBy, FareTerms, Place, RideStatus, utcnow


# Server -> client events


class ServerEvent(BaseModel):
    """Base for every event the core emits."""

    type: str
    timestamp: datetime = Field(default_factory=utcnow)


class Connected(ServerEvent):
    type: Literal["connected"] = "connected"
    identity: str
    role: str


class Pong(ServerEvent):
    type: Literal["pong"] = "pong"


class ErrorEvent(ServerEvent):
    type: Literal["error"] = "error"
    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class NewRideRequest(ServerEvent):
    """Actionable offer addressed to one candidate driver."""

    type: Literal["new_ride_request"] = "new_ride_request"
    ride_id: str
    pickup: Place
    drop: Place
    fare: float
    distance_km: float | None = None
    duration_min: float | None = None
    vehicle_class: VehicleClass
    priority: int
    distance_to_pickup_m: float
    expires_in_s: int
    expires_at: datetime


class RideRequestBroadcast(ServerEvent):
    """Situational summary for every online driver; not an offer."""

    type: Literal["ride_request_broadcast"] = "ride_request_broadcast"
    ride_id: str
    pickup: str
    fare: float
    drivers_notified: int


class RideRequested(ServerEvent):
    type: Literal["ride_requested"] = "ride_requested"
    ride_id: str
    status: RideStatus
    candidates_notified: int
    otp: str


class RideAccepted(ServerEvent):
    type: Literal["ride_accepted"] = "ride_accepted"
    ride_id: str
    driver: dict[str, Any]
    otp: str


class RideTaken(ServerEvent):
    type: Literal["ride_taken"] = "ride_taken"
    ride_id: str
    message: str = "This ride has been accepted by another driver"


class RideAcceptConfirmed(ServerEvent):
    type: Literal["ride_accept_confirmed"] = "ride_accept_confirmed"
    ride_id: str
    pickup: Place
    drop: Place
    fare: float
    otp: str
    requester_name: str | None = None
    requester_phone: str | None = None


class RideAcceptFailed(ServerEvent):
    type: Literal["ride_accept_failed"] = "ride_accept_failed"
    ride_id: str
    reason: str
    message: str


class DriverLocationUpdate(ServerEvent):
    type: Literal["driver_location_update"] = "driver_location_update"
    ride_id: str
    location: Location


class DriverMoved(ServerEvent):
    """Anonymous vehicle position for ambient map display."""

    type: Literal["driver_moved"] = "driver_moved"
    location: Location
    vehicle_class: VehicleClass


class RideStatusUpdate(ServerEvent):
    type: Literal["ride_status_update"] = "ride_status_update"
    ride_id: str
    status: RideStatus


class RideStatusUpdateConfirmed(ServerEvent):
    type: Literal["ride_status_update_confirmed"] = "ride_status_update_confirmed"
    ride_id: str
    status: RideStatus


class RideCancelled(ServerEvent):
    type: Literal["ride_cancelled"] = "ride_cancelled"
    ride_id: str
    by: CancelledBy
    reason: str


class SosAlertRaised(ServerEvent):
    type: Literal["sos_alert"] = "sos_alert"
    ride_id: str
    requester_id: str
    driver_id: str | None
    location: Location
    triggered_by: str
    priority: Literal["CRITICAL"] = "CRITICAL"


# Client -> server messages


class UpdateLocation(BaseModel):
    type: Literal["update_location"]
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class AcceptRide(BaseModel):
    type: Literal["accept_ride"]
    ride_id: str


class UpdateRideStatus(BaseModel):
    type: Literal["update_ride_status"]
    ride_id: str
    status: RideStatus
    otp: str | None = None


class RequestRide(BaseModel):
    type: Literal["request_ride"]
    pickup: Place
    drop: Place
    fare: FareTerms
    vehicle_class: VehicleClass = VehicleClass.AUTO
    distance_km: float | None = Field(default=None, ge=0)
    duration_min: float | None = Field(default=None, ge=0)


class CancelRide(BaseModel):
    type: Literal["cancel_ride"]
    ride_id: str
    reason: str = "Cancelled"


class TriggerSos(BaseModel):
    type: Literal["sos_alert"]
    ride_id: str
    contacts: list[str] = Field(default_factory=list)


class SetOnline(BaseModel):
    type: Literal["set_online"]
    online: bool


class Ping(BaseModel):
    type: Literal["ping"]


ClientMessage = Annotated[
    Union[
        UpdateLocation,
        AcceptRide,
        UpdateRideStatus,
        RequestRide,
        CancelRide,
        TriggerSos,
        SetOnline,
        Ping,
    ],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)
