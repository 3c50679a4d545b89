"""Trip segmentation and statistics."""

from .stats import DailyStats, TripSummary, format_distance, format_duration, summarize_trips
from .trips import DEFAULT_GAP_MS, DEFAULT_MIN_POINTS, build_trip, segment_trips

__all__ = [
    "DEFAULT_GAP_MS",
    "DEFAULT_MIN_POINTS",
    "DailyStats",
    "TripSummary",
    "build_trip",
    "format_distance",
    "format_duration",
    "segment_trips",
    "summarize_trips",
]
