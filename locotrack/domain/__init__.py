"""locotrack Domain Layer - Core models and errors."""

from .errors import (
    InvalidRangeError,
    LocotrackError,
    PersistenceError,
    ProducerStartError,
)
from .models import Decision, Fix, LocationRecord, RejectReason, Trip

__all__ = [
    "Decision",
    "Fix",
    "InvalidRangeError",
    "LocationRecord",
    "LocotrackError",
    "PersistenceError",
    "ProducerStartError",
    "RejectReason",
    "Trip",
]
