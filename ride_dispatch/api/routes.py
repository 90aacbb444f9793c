"""REST routes exposed to the request-intake, history and map collaborators."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ride_dispatch.api.deps import get_core, get_principal, resolve_driver, ride_party
from ride_dispatch.core import DispatchCore
from ride_dispatch.models.driver import Location, VehicleClass
from ride_dispatch.models.ride import FareTerms, Place, Ride
from ride_dispatch.realtime.sessions import Principal
from ride_dispatch.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


# Request/Response Models


class CreateRideRequest(BaseModel):
    """Ride request from an authenticated requester."""

    pickup: Place
    drop: Place
    fare: FareTerms
    vehicle_class: VehicleClass = VehicleClass.AUTO
    distance_km: float | None = Field(default=None, ge=0)
    duration_min: float | None = Field(default=None, ge=0)


class CreateRideResponse(BaseModel):
    success: bool = True
    ride: Ride
    candidates_notified: int


class RideResponse(BaseModel):
    success: bool = True
    ride: Ride


class RideHistoryResponse(BaseModel):
    success: bool = True
    count: int
    rides: list[Ride]


class CancelRideRequest(BaseModel):
    reason: str | None = None


class RateRideRequest(BaseModel):
    rating: int
    review: str | None = None


class SosRequest(BaseModel):
    contacts: list[str] = Field(default_factory=list)


class OnlineRequest(BaseModel):
    online: bool


class NearbyDriversResponse(BaseModel):
    success: bool = True
    count: int
    drivers: list[dict[str, Any]]


class DriverProfileResponse(BaseModel):
    success: bool = True
    driver: dict[str, Any]


# Routes


@router.post(
    "/rides",
    response_model=CreateRideResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_ride(
    request: CreateRideRequest,
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> CreateRideResponse:
    """
    Request a new ride.

    Offers go out to nearby drivers before this returns; the response says
    how many were reached.
    """
    result = await core.engine.request_ride(
        principal.identity,
        request.pickup,
        request.drop,
        request.fare,
        vehicle_class=request.vehicle_class,
        distance_km=request.distance_km,
        duration_min=request.duration_min,
    )
    return CreateRideResponse(ride=result.ride, candidates_notified=result.candidates_notified)


@router.get("/rides", response_model=RideHistoryResponse)
async def list_rides(
    limit: int | None = Query(default=None, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> RideHistoryResponse:
    """Ride history of the caller, newest first."""
    rides = await core.lifecycle.list_ride_history(principal.identity, limit=limit)
    return RideHistoryResponse(count=len(rides), rides=rides)


@router.get("/drivers/nearby", response_model=NearbyDriversResponse)
async def nearby_drivers(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    radius_m: float | None = Query(default=None, gt=0),
    vehicle_class: VehicleClass | None = None,
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> NearbyDriversResponse:
    """Available drivers around a point for the map view."""
    drivers = await core.engine.query_nearby_drivers(
        Location(lat=lat, lng=lng),
        radius_m=radius_m,
        vehicle_class=vehicle_class,
    )
    profiles = [driver.listing() for driver in drivers]
    return NearbyDriversResponse(count=len(profiles), drivers=profiles)


@router.get("/drivers/{driver_id}", response_model=DriverProfileResponse)
async def get_driver(
    driver_id: UUID,
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> DriverProfileResponse:
    """Public driver page with ride count, earnings and rating."""
    driver = await core.engine.get_driver(driver_id)
    return DriverProfileResponse(driver=driver.listing(with_stats=True))


@router.post("/drivers/me/online")
async def set_online(
    request: OnlineRequest,
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> dict[str, Any]:
    """Go online or offline for dispatch."""
    driver = await resolve_driver(core, principal)
    driver = await core.engine.set_driver_online(driver.id, request.online)
    return {"success": True, "is_online": driver.is_online}


@router.get("/rides/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> RideResponse:
    """Ride details for one of its parties."""
    ride = await core.lifecycle.get_ride(ride_id)
    await ride_party(core, principal, ride)
    return RideResponse(ride=ride)


@router.post("/rides/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: str,
    request: CancelRideRequest = CancelRideRequest(),
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> RideResponse:
    """Cancel a ride that has not finished."""
    ride = await core.lifecycle.get_ride(ride_id)
    by, actor_id = await ride_party(core, principal, ride)

    ride = await core.lifecycle.cancel_ride(ride_id, by, request.reason, actor_id=actor_id)
    return RideResponse(ride=ride)


@router.post("/rides/{ride_id}/rate", response_model=RideResponse)
async def rate_ride(
    ride_id: str,
    request: RateRideRequest,
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> RideResponse:
    """Rate a completed ride once."""
    ride = await core.lifecycle.rate_ride(
        ride_id,
        request.rating,
        review=request.review,
        requester_id=principal.identity,
    )
    return RideResponse(ride=ride)


@router.post("/rides/{ride_id}/sos", status_code=status.HTTP_202_ACCEPTED)
async def trigger_sos(
    ride_id: str,
    request: SosRequest = SosRequest(),
    principal: Principal = Depends(get_principal),
    core: DispatchCore = Depends(get_core),
) -> dict[str, Any]:
    """Raise a safety alert for a ride."""
    ride = await core.lifecycle.get_ride(ride_id)
    await ride_party(core, principal, ride)

    await core.safety.trigger_safety_alert(ride_id, principal.identity, request.contacts)
    return {"success": True, "ride_id": ride_id}
