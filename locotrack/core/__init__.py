"""locotrack Core - Movement gate, ingestion coordinator, queries and event bus."""

from .coordinator import BG_TASK, WATCHDOG_TASK, CoordinatorStatus, IngestionCoordinator
from .events import Event, EventBus, EventType
from .gate import GateState, GateStats, MovementGate
from .query import LocationQuery

__all__ = [
    "BG_TASK",
    "WATCHDOG_TASK",
    "CoordinatorStatus",
    "Event",
    "EventBus",
    "EventType",
    "GateState",
    "GateStats",
    "IngestionCoordinator",
    "LocationQuery",
    "MovementGate",
]
