"""State management modules."""

from ride_dispatch.state.machine import RideTransitions
from ride_dispatch.state.manager import StateManager
from ride_dispatch.state.store import EntityStore

__all__ = ["StateManager", "EntityStore", "RideTransitions"]
