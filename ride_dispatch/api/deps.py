"""Shared request dependencies."""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ride_dispatch.core import DispatchCore, get_dispatch_core
from ride_dispatch.errors import AuthError, NotFoundError
from ride_dispatch.models.driver import Driver
from ride_dispatch.models.ride import CancelledBy, Ride
from ride_dispatch.models.user import UserRole
from ride_dispatch.realtime.sessions import Principal, authenticate

bearer_scheme = HTTPBearer(auto_error=False)


async def get_core() -> DispatchCore:
    """Get the dispatch core."""
    return await get_dispatch_core()


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """Authenticate the bearer token of a REST call."""
    return authenticate(credentials.credentials if credentials else None)


async def resolve_driver(core: DispatchCore, principal: Principal) -> Driver:
    """Driver record owned by a driver principal."""
    if not principal.is_driver:
        raise AuthError("Driver role required")

    driver = await core.store.get_driver_by_user(principal.identity)
    if driver is None:
        raise NotFoundError("No driver profile for this account", identity=principal.identity)
    return driver


async def ride_party(
    core: DispatchCore,
    principal: Principal,
    ride: Ride,
) -> tuple[CancelledBy, str | None]:
    """
    How a principal relates to a ride.

    Returns:
        The party the principal acts as and the id to check ownership against

    Raises:
        AuthError: If the principal is neither party nor an admin
    """
    if principal.role == UserRole.ADMIN:
        return CancelledBy.SYSTEM, None
    if principal.identity == ride.requester_id:
        return CancelledBy.REQUESTER, principal.identity
    if principal.is_driver and ride.driver_id is not None:
        driver = await core.store.get_driver_by_user(principal.identity)
        if driver and driver.id == ride.driver_id:
            return CancelledBy.DRIVER, str(driver.id)
    raise AuthError("Not a party to this ride", ride_id=ride.ride_id)
