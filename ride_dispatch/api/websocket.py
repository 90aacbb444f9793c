"""WebSocket handlers for live ride sessions."""

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ride_dispatch.api.deps import resolve_driver, ride_party
from ride_dispatch.core import DispatchCore
from ride_dispatch.errors import AuthError, DispatchError
from ride_dispatch.models.driver import Location
from ride_dispatch.models.events import (
    AcceptRide,
    CancelRide,
    Connected,
    ErrorEvent,
    Ping,
    Pong,
    RequestRide,
    RideAcceptFailed,
    ServerEvent,
    SetOnline,
    TriggerSos,
    UpdateLocation,
    UpdateRideStatus,
    client_message_adapter,
)
from ride_dispatch.realtime.sessions import Principal, authenticate
from ride_dispatch.utils.logging import get_logger

logger = get_logger(__name__)

POLICY_VIOLATION = 1008


def extract_token(websocket: WebSocket) -> str | None:
    """Token from the ``token`` query parameter or a bearer header."""
    token = websocket.query_params.get("token")
    if token:
        return token

    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value
    return None


async def handle_websocket_session(websocket: WebSocket, core: DispatchCore) -> None:
    """
    Handle one live connection from authentication to disconnect.

    Args:
        websocket: WebSocket connection
        core: Dispatch core serving the connection
    """
    try:
        principal = authenticate(extract_token(websocket))
    except AuthError as e:
        logger.info("websocket_rejected", reason=e.message)
        await websocket.close(code=POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    session = core.registry.register(websocket, principal)

    await websocket.send_json(
        Connected(identity=principal.identity, role=principal.role.value).model_dump(mode="json")
    )

    try:
        while True:
            data = await websocket.receive_text()

            try:
                reply = await process_client_message(core, principal, data)
                if reply is not None:
                    await websocket.send_json(reply.model_dump(mode="json"))

            except Exception as e:
                logger.error(
                    "websocket_message_error",
                    session_id=session.id,
                    identity=principal.identity,
                    error=str(e),
                )
                await websocket.send_json(
                    ErrorEvent(
                        error="internal_error",
                        message="Failed to process message",
                    ).model_dump(mode="json")
                )

    except WebSocketDisconnect:
        logger.info("websocket_client_disconnected", session_id=session.id)

    finally:
        core.registry.unregister(session)


async def process_client_message(
    core: DispatchCore,
    principal: Principal,
    raw: str,
) -> ServerEvent | None:
    """
    Decode one client message and run it against the core.

    Results addressed to groups travel over the event bus; only direct
    replies (pong, rejections) are returned here.

    Args:
        core: Dispatch core
        principal: Authenticated sender
        raw: JSON text received

    Returns:
        Event to send back on the same connection, if any
    """
    try:
        message = client_message_adapter.validate_json(raw)
    except PydanticValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        return ErrorEvent(
            error="validation_error",
            message="Invalid message format",
            details={"problems": problems},
        )

    try:
        return await _handle(core, principal, message)
    except DispatchError as e:
        if isinstance(message, AcceptRide):
            return RideAcceptFailed(ride_id=message.ride_id, reason=e.code, message=e.message)
        return ErrorEvent(error=e.code, message=e.message, details=e.details)


async def _handle(core: DispatchCore, principal: Principal, message: BaseModel) -> ServerEvent | None:
    if isinstance(message, Ping):
        return Pong()

    if isinstance(message, UpdateLocation):
        driver = await resolve_driver(core, principal)
        await core.telemetry.report_location(driver.id, Location(lat=message.lat, lng=message.lng))

    elif isinstance(message, AcceptRide):
        driver = await resolve_driver(core, principal)
        await core.engine.accept_offer(driver.id, message.ride_id)

    elif isinstance(message, UpdateRideStatus):
        driver = await resolve_driver(core, principal)
        await core.lifecycle.advance_status(
            driver.id, message.ride_id, message.status, otp=message.otp
        )

    elif isinstance(message, RequestRide):
        await core.engine.request_ride(
            principal.identity,
            message.pickup,
            message.drop,
            message.fare,
            vehicle_class=message.vehicle_class,
            distance_km=message.distance_km,
            duration_min=message.duration_min,
        )

    elif isinstance(message, CancelRide):
        ride = await core.lifecycle.get_ride(message.ride_id)
        by, actor_id = await ride_party(core, principal, ride)
        await core.lifecycle.cancel_ride(message.ride_id, by, message.reason, actor_id=actor_id)

    elif isinstance(message, TriggerSos):
        ride = await core.lifecycle.get_ride(message.ride_id)
        await ride_party(core, principal, ride)
        await core.safety.trigger_safety_alert(
            message.ride_id, principal.identity, message.contacts
        )

    elif isinstance(message, SetOnline):
        driver = await resolve_driver(core, principal)
        await core.engine.set_driver_online(driver.id, message.online)

    return None
