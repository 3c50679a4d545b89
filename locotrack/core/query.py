"""Read-only query surface for presentation layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..analytics.stats import TripSummary, summarize_trips
from ..analytics.trips import segment_trips
from ..config import TripConfig
from ..domain.models import LocationRecord, Trip
from ..infrastructure.gps.sources import now_ms as current_ms

if TYPE_CHECKING:
    from ..infrastructure.database.async_repository import AsyncLocationRepository


class LocationQuery:
    """Time-range queries and on-demand trip segmentation over the store."""

    def __init__(
        self,
        repository: AsyncLocationRepository,
        trip_config: TripConfig | None = None,
    ) -> None:
        self.repository = repository
        self.trip_config = trip_config or TripConfig()

    async def by_time_range(self, from_ms: int, to_ms: int) -> list[LocationRecord]:
        """Ascending records in [from_ms, to_ms]. Raises InvalidRangeError if from_ms >= to_ms."""
        return await self.repository.query_range(from_ms, to_ms)

    async def all(self) -> list[LocationRecord]:
        return await self.repository.query_all()

    async def trips(self, from_ms: int | None = None, to_ms: int | None = None) -> list[Trip]:
        """Segment the whole store, or only the records inside a time window."""
        if from_ms is None and to_ms is None:
            points = await self.all()
        else:
            points = await self.by_time_range(
                from_ms if from_ms is not None else 0,
                to_ms if to_ms is not None else current_ms(),
            )
        return segment_trips(points, self.trip_config.gap_ms, self.trip_config.min_points)

    async def summary(self, now_ms: int | None = None) -> TripSummary:
        trips = await self.trips()
        return summarize_trips(
            trips,
            now_ms if now_ms is not None else current_ms(),
            self.trip_config.timezone,
        )
