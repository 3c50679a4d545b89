"""Aggregate statistics over segmented trips."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from ..domain.models import Trip

WEEK_MS = 7 * 24 * 60 * 60 * 1000


@dataclass(frozen=True, slots=True)
class DailyStats:
    """Distance and trip count for one local calendar day."""

    day: str
    distance_km: float
    trips: int


@dataclass(frozen=True, slots=True)
class TripSummary:
    total_trips: int = 0
    total_distance_m: float = 0.0
    total_duration_ms: int = 0
    average_speed_kmh: float = 0.0
    today_trips: int = 0
    week_trips: int = 0
    longest_trip: Trip | None = None
    daily: list[DailyStats] = field(default_factory=list)


def _day_start_ms(now_ms: int, tz: ZoneInfo, days_ago: int) -> int:
    local_now = datetime.fromtimestamp(now_ms / 1000.0, tz=tz)
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int((midnight - timedelta(days=days_ago)).timestamp() * 1000)


def summarize_trips(
    trips: Sequence[Trip],
    now_ms: int,
    tz_name: str = "UTC",
) -> TripSummary:
    """Totals, speed, recent counts and a seven-day daily breakdown.

    Args:
        trips: Trips to summarize.
        now_ms: Reference "now" in epoch milliseconds.
        tz_name: IANA timezone used for day boundaries.
    """

    tz = ZoneInfo(tz_name)
    daily: list[DailyStats] = []
    for days_ago in range(6, -1, -1):
        day_start = _day_start_ms(now_ms, tz, days_ago)
        day_end = _day_start_ms(now_ms, tz, days_ago - 1)
        day_trips = [t for t in trips if day_start <= t.start_time < day_end]
        daily.append(
            DailyStats(
                day=datetime.fromtimestamp(day_start / 1000.0, tz=tz).strftime("%a"),
                distance_km=sum(t.distance_meters for t in day_trips) / 1000.0,
                trips=len(day_trips),
            )
        )

    if not trips:
        return TripSummary(daily=daily)

    total_distance = sum(t.distance_meters for t in trips)
    total_duration = sum(t.duration_ms for t in trips)
    hours = total_duration / (1000 * 60 * 60)
    today_start = _day_start_ms(now_ms, tz, 0)

    return TripSummary(
        total_trips=len(trips),
        total_distance_m=total_distance,
        total_duration_ms=total_duration,
        average_speed_kmh=(total_distance / 1000.0) / hours if hours > 0 else 0.0,
        today_trips=sum(1 for t in trips if t.start_time >= today_start),
        week_trips=sum(1 for t in trips if t.start_time >= now_ms - WEEK_MS),
        longest_trip=max(trips, key=lambda t: t.distance_meters),
        daily=daily,
    )


def format_distance(meters: float) -> str:
    """'1.2 km' from one kilometer up, otherwise whole meters."""

    km = meters / 1000.0
    return f"{km:.1f} km" if km >= 1 else f"{round(meters)} m"


def format_duration(ms: int) -> str:
    """'1h 5m' from one hour up, otherwise minutes."""

    total_minutes = ms // (1000 * 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes} min"
