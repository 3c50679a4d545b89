"""
Async Repository Unit Tests
===========================

Tests for AsyncLocationRepository using pytest-asyncio.
"""

import asyncio

import aiosqlite
import pytest
import pytest_asyncio

from locotrack.domain.errors import InvalidRangeError, PersistenceError
from locotrack.infrastructure.database.async_repository import AsyncLocationRepository

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def async_repo(tmp_path):
    """Create a temporary async repository for testing."""
    repo = AsyncLocationRepository(tmp_path / "test_locations.db")
    await repo.init_schema()
    yield repo
    await repo.close()


async def _append_many(repo, timestamps):
    return [
        await repo.append(latitude=41.0 + i * 0.001, longitude=29.0, timestamp_ms=ts)
        for i, ts in enumerate(timestamps)
    ]


async def test_append_assigns_increasing_ids(async_repo):
    first = await async_repo.append(latitude=41.0, longitude=29.0, timestamp_ms=1000)
    second = await async_repo.append(latitude=41.001, longitude=29.0, timestamp_ms=2000)
    assert first.id < second.id
    assert first.synced is False


async def test_round_trip_preserves_values_and_order(async_repo):
    appended = await _append_many(async_repo, [1000, 2000, 3000])
    stored = await async_repo.query_all()
    assert stored == appended
    assert await async_repo.count() == 3


async def test_query_all_orders_by_timestamp(async_repo):
    """A late-arriving older fix is returned in timestamp order."""
    await _append_many(async_repo, [3000, 1000, 2000])
    stored = await async_repo.query_all()
    assert [r.timestamp_ms for r in stored] == [1000, 2000, 3000]


async def test_query_range_inclusive_bounds(async_repo):
    await _append_many(async_repo, [1000, 2000, 3000, 4000])
    result = await async_repo.query_range(2000, 3000)
    assert [r.timestamp_ms for r in result] == [2000, 3000]


async def test_query_range_empty(async_repo):
    await _append_many(async_repo, [1000])
    assert await async_repo.query_range(5000, 6000) == []


@pytest.mark.parametrize("from_ms,to_ms", [(2000, 2000), (3000, 1000)])
async def test_query_range_invalid(async_repo, from_ms, to_ms):
    with pytest.raises(InvalidRangeError):
        await async_repo.query_range(from_ms, to_ms)


async def test_latest_returns_most_recent_by_timestamp(async_repo):
    assert await async_repo.latest() is None
    await _append_many(async_repo, [2000, 5000, 3000])
    latest = await async_repo.latest()
    assert latest is not None
    assert latest.timestamp_ms == 5000


async def test_clear_all(async_repo):
    await _append_many(async_repo, [1000, 2000])
    assert await async_repo.clear_all() == 2
    assert await async_repo.count() == 0
    assert await async_repo.query_all() == []


async def test_mark_synced(async_repo):
    records = await _append_many(async_repo, [1000, 2000, 3000])
    updated = await async_repo.mark_synced([records[0].id, records[2].id])
    assert updated == 2
    stored = await async_repo.query_all()
    assert [r.synced for r in stored] == [True, False, True]
    assert await async_repo.mark_synced([]) == 0


async def test_get_stats(async_repo):
    await _append_many(async_repo, [1000, 4000])
    stats = await async_repo.get_stats()
    assert stats["records_total"] == 2
    assert stats["first_timestamp_ms"] == 1000
    assert stats["last_timestamp_ms"] == 4000
    assert stats["unsynced_total"] == 2


async def test_concurrent_appends_lose_nothing(async_repo):
    records = await asyncio.gather(
        *(
            async_repo.append(latitude=41.0, longitude=29.0, timestamp_ms=i)
            for i in range(25)
        )
    )
    assert len({r.id for r in records}) == 25
    assert await async_repo.count() == 25


async def test_append_failure_raises_persistence_error(async_repo):
    async with aiosqlite.connect(str(async_repo.db_path)) as conn:
        await conn.execute("DROP TABLE locations")
        await conn.commit()

    with pytest.raises(PersistenceError):
        await async_repo.append(latitude=41.0, longitude=29.0, timestamp_ms=1)


async def test_init_schema_is_idempotent(async_repo):
    await _append_many(async_repo, [1000])
    await async_repo.init_schema()
    assert await async_repo.count() == 1


async def test_watch_emits_snapshot_after_changes(async_repo):
    stream = async_repo.watch()
    try:
        assert await anext(stream) == []

        await async_repo.append(latitude=41.0, longitude=29.0, timestamp_ms=1000)
        snapshot = await asyncio.wait_for(anext(stream), timeout=2.0)
        assert [r.timestamp_ms for r in snapshot] == [1000]

        await async_repo.clear_all()
        snapshot = await asyncio.wait_for(anext(stream), timeout=2.0)
        assert snapshot == []
    finally:
        await stream.aclose()


async def test_schema_columns(async_repo):
    async with aiosqlite.connect(str(async_repo.db_path)) as conn:
        cursor = await conn.execute("PRAGMA table_info(locations)")
        columns = [row[1] for row in await cursor.fetchall()]
        cursor = await conn.execute("PRAGMA index_list(locations)")
        indexes = [row[1] for row in await cursor.fetchall()]
    assert columns == ["id", "latitude", "longitude", "timestampMs", "synced"]
    assert "idx_locations_timestamp" in indexes


async def test_close_ends_watch_streams(async_repo):
    stream = async_repo.watch()
    assert await anext(stream) == []

    async def next_snapshot():
        return await anext(stream)

    pending = asyncio.create_task(next_snapshot())
    await asyncio.sleep(0)
    await async_repo.close()

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(pending, timeout=2.0)

    # Per-call connections keep working after close
    await async_repo.append(latitude=41.0, longitude=29.0, timestamp_ms=1)
    assert await async_repo.count() == 1
