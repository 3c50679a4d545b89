"""
Great-Circle Distance
=====================

Haversine distance between coordinates on a sphere of radius 6 371 km.

Usage:
    d = distance_meters(record_a, record_b)
    d = calculate_distance(41.0, 29.0, 41.001, 29.0)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Protocol

EARTH_RADIUS_M = 6_371_000.0


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points using the Haversine formula.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def distance_meters(a: HasCoordinates, b: HasCoordinates) -> float:
    """Distance in meters between two objects carrying latitude/longitude."""
    return calculate_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def path_length_meters(points: Sequence[HasCoordinates]) -> float:
    """Sum of distances along consecutive points (not straight-line)."""
    total = 0.0
    for i in range(1, len(points)):
        total += distance_meters(points[i - 1], points[i])
    return total
