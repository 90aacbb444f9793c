"""Wiring of the store, event bus and services into one dispatch core."""

from dataclasses import dataclass

from ride_dispatch.config import Settings, get_settings
from ride_dispatch.models.ride import utcnow
from ride_dispatch.realtime.bus import EventBus, LocalEventBus, RedisEventBus
from ride_dispatch.realtime.sessions import SessionRegistry
from ride_dispatch.services.dispatch import Clock, DispatchEngine
from ride_dispatch.services.lifecycle import RideLifecycle
from ride_dispatch.services.safety import SafetyService
from ride_dispatch.services.telemetry import TelemetryRelay
from ride_dispatch.state.manager import StateManager, get_state_manager
from ride_dispatch.state.store import EntityStore


@dataclass
class DispatchCore:
    """Everything a request handler needs."""

    state: StateManager
    store: EntityStore
    registry: SessionRegistry
    bus: EventBus
    engine: DispatchEngine
    lifecycle: RideLifecycle
    telemetry: TelemetryRelay
    safety: SafetyService


def build_core(
    state_manager: StateManager,
    settings: Settings | None = None,
    clock: Clock = utcnow,
) -> DispatchCore:
    """Assemble a dispatch core around a state manager."""
    settings = settings or get_settings()
    store = EntityStore(state_manager)
    registry = SessionRegistry()

    bus: EventBus
    if settings.event_bus_backend == "redis":
        bus = RedisEventBus(
            state_manager,
            registry,
            settings.event_channel,
            retry_delay=settings.event_listener_retry_delay,
            max_retry_delay=settings.event_listener_max_delay,
        )
    else:
        bus = LocalEventBus(registry)

    return DispatchCore(
        state=state_manager,
        store=store,
        registry=registry,
        bus=bus,
        engine=DispatchEngine(store, bus, settings, clock=clock),
        lifecycle=RideLifecycle(store, bus, settings, clock=clock),
        telemetry=TelemetryRelay(store, bus, settings, clock=clock),
        safety=SafetyService(store, bus, clock=clock),
    )


# Global dispatch core instance
_core: DispatchCore | None = None


async def get_dispatch_core() -> DispatchCore:
    """Get the global dispatch core instance."""
    global _core
    if _core is None:
        _core = build_core(await get_state_manager())
    return _core
