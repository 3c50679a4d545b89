"""Trip segmentation over stored location records."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Final

from ..domain.models import LocationRecord, Trip
from ..infrastructure.gps.distance import path_length_meters

DEFAULT_GAP_MS: Final[int] = 10 * 60 * 1000
DEFAULT_MIN_POINTS: Final[int] = 2


def build_trip(points: Sequence[LocationRecord]) -> Trip:
    """Compute trip metrics for a non-empty group of consecutive records."""

    start = points[0]
    end = points[-1]
    return Trip(
        start_time=start.timestamp_ms,
        end_time=end.timestamp_ms,
        duration_ms=end.timestamp_ms - start.timestamp_ms,
        distance_meters=path_length_meters(points),
        points=list(points),
    )


def segment_trips(
    points: Sequence[LocationRecord],
    gap_ms: int = DEFAULT_GAP_MS,
    min_points: int = DEFAULT_MIN_POINTS,
) -> list[Trip]:
    """Partition an ascending record sequence into trips.

    A new group starts whenever the time since the previous point in the
    current group is at least ``gap_ms``. Groups with fewer than
    ``min_points`` points are dropped.

    Args:
        points: Records sorted ascending by ``timestamp_ms``.
        gap_ms: Minimum gap (ms) that separates two trips.
        min_points: Minimum points for a group to be reported as a trip.

    Returns:
        Trips in input order.
    """

    trips: list[Trip] = []
    current: list[LocationRecord] = []

    for point in points:
        if not current:
            current.append(point)
            continue
        if point.timestamp_ms - current[-1].timestamp_ms >= gap_ms:
            if len(current) >= min_points:
                trips.append(build_trip(current))
            current = [point]
        else:
            current.append(point)

    if current and len(current) >= min_points:
        trips.append(build_trip(current))
    return trips
