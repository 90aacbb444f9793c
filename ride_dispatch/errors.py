"""Error taxonomy surfaced to callers of the dispatch core."""

from typing import Any


class DispatchError(Exception):
    """Base class for structured rejections."""

    code = "dispatch_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize for a REST body or a WebSocket event."""
        data: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(DispatchError):
    """Malformed input; the caller may retry with corrected input."""

    code = "validation_error"
    status_code = 422


class AuthError(DispatchError):
    """Unauthenticated or unauthorized."""

    code = "unauthorized"
    status_code = 401


class NotFoundError(DispatchError):
    """Referenced ride or driver is absent."""

    code = "not_found"
    status_code = 404


class InvalidTransitionError(DispatchError):
    """State machine precondition violated."""

    code = "invalid_transition"
    status_code = 409


class InvalidStateError(InvalidTransitionError):
    """Ride is not in a state that allows the operation."""

    code = "invalid_state"


class DriverUnavailableError(InvalidTransitionError):
    """Driver is offline or already bound to a ride."""

    code = "driver_unavailable"


class OfferExpiredError(InvalidTransitionError):
    """Acceptance arrived after the offer window closed."""

    code = "offer_expired"


class AlreadyTakenError(DispatchError):
    """Another driver won the assignment race."""

    code = "already_taken"
    status_code = 409


class AlreadyRatedError(DispatchError):
    """The ride already carries a requester rating."""

    code = "already_rated"
    status_code = 409


class StoreUnavailableError(DispatchError):
    """Transient infrastructure fault in the entity store."""

    code = "store_unavailable"
    status_code = 503
