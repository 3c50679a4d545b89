"""GPS infrastructure - position sources and geo math."""

from .distance import calculate_distance, distance_meters, path_length_meters
from .gpsd_client import AsyncGPSClient, GPSConfig
from .sources import (
    EmitPolicy,
    MockPositionSource,
    PositionSource,
    ReplayPositionSource,
    SourceOptions,
    now_ms,
)

__all__ = [
    "AsyncGPSClient",
    "EmitPolicy",
    "GPSConfig",
    "MockPositionSource",
    "PositionSource",
    "ReplayPositionSource",
    "SourceOptions",
    "calculate_distance",
    "distance_meters",
    "now_ms",
    "path_length_meters",
]
