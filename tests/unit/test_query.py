"""
Query Surface Unit Tests
========================
"""

import pytest
import pytest_asyncio

from locotrack.config import TripConfig
from locotrack.core.query import LocationQuery
from locotrack.domain.errors import InvalidRangeError
from locotrack.infrastructure.database.async_repository import AsyncLocationRepository

pytestmark = pytest.mark.asyncio

# 2024-05-15 12:00 UTC
NOW_MS = 1715774400000


@pytest_asyncio.fixture
async def query(tmp_path):
    repo = AsyncLocationRepository(tmp_path / "query.db")
    await repo.init_schema()
    # Two trips: three points, a 15 minute gap, then two points
    base = NOW_MS - 60 * 60 * 1000
    for i, offset in enumerate([0, 60_000, 120_000, 1_020_000, 1_080_000]):
        await repo.append(latitude=41.0 + i * 0.001, longitude=29.0, timestamp_ms=base + offset)
    yield LocationQuery(repo, TripConfig(gap_ms=600_000, min_points=2))
    await repo.close()


async def test_by_time_range(query):
    base = NOW_MS - 60 * 60 * 1000
    records = await query.by_time_range(base + 60_000, base + 1_020_000)
    assert [r.timestamp_ms - base for r in records] == [60_000, 120_000, 1_020_000]


async def test_by_time_range_rejects_inverted_window(query):
    with pytest.raises(InvalidRangeError) as exc_info:
        await query.by_time_range(NOW_MS, NOW_MS - 1)
    assert exc_info.value.from_ms == NOW_MS


async def test_all(query):
    assert len(await query.all()) == 5


async def test_trips_over_whole_store(query):
    trips = await query.trips()
    assert [t.point_count for t in trips] == [3, 2]


async def test_trips_in_window(query):
    base = NOW_MS - 60 * 60 * 1000
    trips = await query.trips(from_ms=base + 1_000_000)
    assert len(trips) == 1
    assert trips[0].start_time == base + 1_020_000


async def test_summary(query):
    summary = await query.summary(now_ms=NOW_MS)
    assert summary.total_trips == 2
    assert summary.today_trips == 2
    assert summary.week_trips == 2
    assert summary.total_distance_m > 0
