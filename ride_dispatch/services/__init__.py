"""Dispatch core services."""

from ride_dispatch.services.dispatch import AcceptResult, DispatchEngine, RideRequestResult
from ride_dispatch.services.lifecycle import RideLifecycle
from ride_dispatch.services.safety import SafetyService
from ride_dispatch.services.telemetry import LocationReport, TelemetryRelay

__all__ = [
    "AcceptResult",
    "DispatchEngine",
    "LocationReport",
    "RideLifecycle",
    "RideRequestResult",
    "SafetyService",
    "TelemetryRelay",
]
