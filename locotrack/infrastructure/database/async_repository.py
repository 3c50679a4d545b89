"""
Async Location Repository
=========================

Fully async data access layer for location records using aiosqlite.

Records are append-only: the only mutation after insert is the ``synced``
flag, and the only deletion is the explicit ``clear_all``. Appends are
serialized by an internal lock so concurrent producers never lose or
interleave writes.

Usage:
    repo = AsyncLocationRepository("data/locations.db")
    await repo.init_schema()

    record = await repo.append(latitude=41.0, longitude=29.0, timestamp_ms=...)
    points = await repo.query_range(from_ms, to_ms)

    await repo.close()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from ...domain.errors import InvalidRangeError, PersistenceError
from ...domain.models import LocationRecord
from .schema import LOCATIONS_SCHEMA

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = "SELECT id, latitude, longitude, timestampMs, synced FROM locations"


def _row_to_record(row: aiosqlite.Row) -> LocationRecord:
    return LocationRecord(
        id=row["id"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        timestamp_ms=row["timestampMs"],
        synced=bool(row["synced"]),
    )


class AsyncLocationRepository:
    """
    Async repository for location record persistence.

    Non-blocking SQLite operations using aiosqlite.
    All methods are async - no blocking I/O.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._closed = False
        self._write_lock = asyncio.Lock()
        self._changed = asyncio.Condition()
        self._version = 0

    async def init_schema(self) -> None:
        """Initialize database schema. Must be called after creation."""
        async with self._get_connection() as conn:
            await conn.executescript(LOCATIONS_SCHEMA)
            await conn.commit()
        self._closed = False
        logger.info("Location database initialized: %s", self.db_path)

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get async database connection with row factory."""
        conn = await aiosqlite.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            await conn.close()

    async def close(self) -> None:
        """
        End every open ``watch()`` stream.

        Connections are opened per call, so reads and writes keep working;
        ``init_schema()`` re-arms watching.
        """
        async with self._changed:
            self._closed = True
            self._changed.notify_all()
        logger.debug("Async repository closed")

    async def _notify_changed(self) -> None:
        async with self._changed:
            self._version += 1
            self._changed.notify_all()

    # =========================================================================
    # Writes
    # =========================================================================

    async def append(
        self,
        latitude: float,
        longitude: float,
        timestamp_ms: int,
        synced: bool = False,
    ) -> LocationRecord:
        """
        Durably insert a record and return it with its assigned id.

        Raises:
            PersistenceError: if the write or commit fails.
        """
        async with self._write_lock:
            try:
                async with self._get_connection() as conn:
                    cursor = await conn.execute(
                        """
                        INSERT INTO locations (latitude, longitude, timestampMs, synced)
                        VALUES (?, ?, ?, ?)
                        """,
                        (latitude, longitude, timestamp_ms, 1 if synced else 0),
                    )
                    await conn.commit()
                    record_id = cursor.lastrowid
            except (aiosqlite.Error, OSError) as e:
                raise PersistenceError(f"failed to append location: {e}") from e

        if record_id is None:
            raise PersistenceError("database did not assign an id")

        await self._notify_changed()
        return LocationRecord(
            id=record_id,
            latitude=latitude,
            longitude=longitude,
            timestamp_ms=timestamp_ms,
            synced=synced,
        )

    async def mark_synced(self, ids: Iterable[int]) -> int:
        """Flag records as synced. Returns number of rows updated."""
        id_list = list(ids)
        if not id_list:
            return 0
        placeholders = ",".join("?" for _ in id_list)
        async with self._write_lock:
            async with self._get_connection() as conn:
                cursor = await conn.execute(
                    f"UPDATE locations SET synced = 1 WHERE id IN ({placeholders})",
                    id_list,
                )
                await conn.commit()
                updated = cursor.rowcount
        await self._notify_changed()
        return updated

    async def clear_all(self) -> int:
        """Delete every record. Irreversible. Returns rows deleted."""
        async with self._write_lock:
            async with self._get_connection() as conn:
                cursor = await conn.execute("DELETE FROM locations")
                await conn.commit()
                deleted = cursor.rowcount
        logger.warning("Cleared %d location records from %s", deleted, self.db_path)
        await self._notify_changed()
        return deleted

    # =========================================================================
    # Queries
    # =========================================================================

    async def query_range(self, from_ms: int, to_ms: int) -> list[LocationRecord]:
        """Records with from_ms <= timestamp_ms <= to_ms, ascending."""
        if from_ms >= to_ms:
            raise InvalidRangeError(from_ms, to_ms)

        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"""
                {_SELECT_COLUMNS}
                WHERE timestampMs >= ? AND timestampMs <= ?
                ORDER BY timestampMs ASC, id ASC
                """,
                (from_ms, to_ms),
            )
            rows = await cursor.fetchall()
            return [_row_to_record(row) for row in rows]

    async def query_all(self) -> list[LocationRecord]:
        """All records, ascending by timestamp."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"{_SELECT_COLUMNS} ORDER BY timestampMs ASC, id ASC"
            )
            rows = await cursor.fetchall()
            return [_row_to_record(row) for row in rows]

    async def count(self) -> int:
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM locations")
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def latest(self) -> LocationRecord | None:
        """Most recent record by timestamp, or None for an empty store."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"{_SELECT_COLUMNS} ORDER BY timestampMs DESC, id DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            return _row_to_record(row) if row else None

    async def get_stats(self) -> dict:
        """Get store statistics."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT
                    COUNT(*) AS records_total,
                    MIN(timestampMs) AS first_timestamp_ms,
                    MAX(timestampMs) AS last_timestamp_ms,
                    COALESCE(SUM(CASE WHEN synced = 0 THEN 1 ELSE 0 END), 0) AS unsynced_total
                FROM locations
                """
            )
            row = await cursor.fetchone()
            return dict(row) if row else {}

    # =========================================================================
    # Change notification
    # =========================================================================

    async def watch(self) -> AsyncIterator[list[LocationRecord]]:
        """
        Yield the current snapshot, then a fresh one after every change.

        Each call starts an independent stream; snapshots that change
        faster than the consumer reads them are coalesced. The stream ends
        when the repository is closed.
        """
        seen = -1
        while True:
            async with self._changed:
                await self._changed.wait_for(lambda: self._closed or self._version != seen)
                if self._closed:
                    return
                seen = self._version
            yield await self.query_all()
