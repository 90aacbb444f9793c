"""Data models for the dispatch core."""

from ride_dispatch.models.driver import Driver, Location, VehicleClass
from ride_dispatch.models.ride import (
    Cancellation,
    CancelledBy,
    Drop,
    FareTerms,
    Pickup,
    Rating,
    Ride,
    RideOffer,
    RideStatus,
    RoutePoint,
    SafetyAlert,
)
from ride_dispatch.models.user import User, UserRole

__all__ = [
    # Driver
    "Driver",
    "Location",
    "VehicleClass",
    # Ride
    "Cancellation",
    "CancelledBy",
    "Drop",
    "FareTerms",
    "Pickup",
    "Rating",
    "Ride",
    "RideOffer",
    "RideStatus",
    "RoutePoint",
    "SafetyAlert",
    # User
    "User",
    "UserRole",
]
