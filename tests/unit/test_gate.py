"""
Movement Gate Unit Tests
========================

Accept/reject rules, state handling and serialization under concurrent
producers.
"""

from __future__ import annotations

import asyncio
import itertools
import math

import pytest

from locotrack.core.gate import MovementGate
from locotrack.domain.errors import PersistenceError
from locotrack.domain.models import Fix, LocationRecord, RejectReason
from locotrack.infrastructure.gps.distance import distance_meters

pytestmark = pytest.mark.asyncio

# ~11.1 m per 0.0001 degree of latitude
STEP_DEG = 0.0001


def _fix(lat: float, lon: float = 29.0, ts: int = 0) -> Fix:
    return Fix(latitude=lat, longitude=lon, captured_at_ms=ts)


class RecordingSink:
    """In-memory sink that yields control during every write."""

    def __init__(self, fail: bool = False) -> None:
        self.records: list[LocationRecord] = []
        self.fail = fail
        self._ids = itertools.count(1)

    async def append(self, latitude, longitude, timestamp_ms, synced=False):
        await asyncio.sleep(0)
        if self.fail:
            raise PersistenceError("disk full")
        record = LocationRecord(
            id=next(self._ids),
            latitude=latitude,
            longitude=longitude,
            timestamp_ms=timestamp_ms,
            synced=synced,
        )
        self.records.append(record)
        return record


class TestAcceptRules:
    async def test_first_fix_always_accepted(self):
        gate = MovementGate(threshold_m=50)
        decision = await gate.evaluate(_fix(41.0))
        assert decision.accepted is True
        assert decision.record is not None
        assert decision.distance_m is None
        assert gate.state.last_accepted == decision.record

    async def test_fix_beyond_threshold_accepted(self):
        gate = MovementGate(threshold_m=50)
        await gate.evaluate(_fix(41.0))
        decision = await gate.evaluate(_fix(41.001, ts=1000))  # ~111 m
        assert decision.accepted is True
        assert decision.distance_m == pytest.approx(111, abs=2)
        assert gate.state.last_accepted.timestamp_ms == 1000

    async def test_rejection_does_not_mutate_state(self):
        sink = RecordingSink()
        gate = MovementGate(threshold_m=50, sink=sink)
        first = await gate.evaluate(_fix(41.0))

        decision = await gate.evaluate(_fix(41.0 + STEP_DEG, ts=5000))

        assert decision.accepted is False
        assert decision.reason is RejectReason.BELOW_THRESHOLD
        assert decision.distance_m < 50
        assert gate.state.last_accepted == first.record
        assert len(sink.records) == 1

    async def test_threshold_is_measured_from_last_accepted_not_last_seen(self):
        """Small steps accumulate until they exceed the threshold."""
        gate = MovementGate(threshold_m=50)
        await gate.evaluate(_fix(41.0))
        accepted = []
        for i in range(1, 10):
            decision = await gate.evaluate(_fix(41.0 + i * STEP_DEG, ts=i))
            if decision.accepted:
                accepted.append(i)
        # 5 steps ~= 55.6 m is the first point beyond 50 m
        assert accepted[0] == 5

    @pytest.mark.parametrize(
        "lat,lon",
        [(math.nan, 29.0), (41.0, math.inf), (91.0, 29.0), (41.0, -181.0)],
    )
    async def test_malformed_fix_rejected(self, lat, lon):
        sink = RecordingSink()
        gate = MovementGate(sink=sink)
        decision = await gate.evaluate(_fix(lat, lon))
        assert decision.accepted is False
        assert decision.reason is RejectReason.MALFORMED
        assert gate.state.last_accepted is None
        assert sink.records == []


class TestPersistence:
    async def test_accepted_record_comes_from_sink(self):
        sink = RecordingSink()
        gate = MovementGate(sink=sink)
        decision = await gate.evaluate(_fix(41.0, ts=123))
        assert decision.record == sink.records[0]
        assert decision.record.timestamp_ms == 123

    async def test_persistence_failure_does_not_advance_state(self):
        sink = RecordingSink(fail=True)
        gate = MovementGate(sink=sink)

        decision = await gate.evaluate(_fix(41.0))

        assert decision.accepted is False
        assert decision.reason is RejectReason.PERSISTENCE_FAILED
        assert gate.state.last_accepted is None
        assert gate.stats.rejected[RejectReason.PERSISTENCE_FAILED] == 1

        # Recovery: next fix at same place is treated as the first one
        sink.fail = False
        assert (await gate.evaluate(_fix(41.0))).accepted is True

    async def test_rehydrate_restores_last_accepted(self):
        gate = MovementGate(threshold_m=50)
        stored = LocationRecord(id=7, latitude=41.0, longitude=29.0, timestamp_ms=1)
        await gate.rehydrate(stored)

        decision = await gate.evaluate(_fix(41.0 + STEP_DEG))
        assert decision.reason is RejectReason.BELOW_THRESHOLD
        assert gate.state.last_accepted == stored


class TestLifecycle:
    async def test_closed_gate_rejects(self):
        sink = RecordingSink()
        gate = MovementGate(sink=sink)
        await gate.close()

        decision = await gate.evaluate(_fix(41.0))
        assert decision.reason is RejectReason.STOPPED
        assert sink.records == []

        gate.reopen()
        assert (await gate.evaluate(_fix(41.0))).accepted is True

    async def test_close_waits_for_inflight_evaluation(self):
        release = asyncio.Event()

        class SlowSink(RecordingSink):
            async def append(self, *args, **kwargs):
                await release.wait()
                return await super().append(*args, **kwargs)

        sink = SlowSink()
        gate = MovementGate(sink=sink)
        inflight = asyncio.create_task(gate.evaluate(_fix(41.0)))
        await asyncio.sleep(0)
        closing = asyncio.create_task(gate.close())
        await asyncio.sleep(0)
        assert not closing.done()

        release.set()
        decision = await inflight
        await closing
        assert decision.accepted is True
        assert gate.is_closed

    async def test_cancel_during_write_still_commits_state(self):
        """A producer cancelled mid-write leaves store and gate in agreement."""
        release = asyncio.Event()

        class SlowSink(RecordingSink):
            async def append(self, *args, **kwargs):
                record = await super().append(*args, **kwargs)
                await release.wait()
                return record

        sink = SlowSink()
        gate = MovementGate(threshold_m=50, sink=sink)
        inflight = asyncio.create_task(gate.evaluate(_fix(41.0)))
        while not sink.records:
            await asyncio.sleep(0)

        inflight.cancel()
        await asyncio.sleep(0)
        assert not inflight.done()

        release.set()
        with pytest.raises(asyncio.CancelledError):
            await inflight

        assert gate.state.last_accepted == sink.records[0]
        decision = await gate.evaluate(_fix(41.0 + STEP_DEG, ts=1000))
        assert decision.reason is RejectReason.BELOW_THRESHOLD
        assert len(sink.records) == 1


class TestConcurrentProducers:
    async def test_interleaved_producers_respect_single_threshold(self):
        """Two producers sampling the same walk never both save near-duplicates."""
        sink = RecordingSink()
        gate = MovementGate(threshold_m=50, sink=sink)

        async def producer(offset: float, base_ts: int) -> None:
            for i in range(40):
                await gate.evaluate(_fix(41.0 + i * STEP_DEG + offset, ts=base_ts + i * 1000))
                await asyncio.sleep(0)

        await asyncio.gather(producer(0.0, 0), producer(STEP_DEG / 2, 500))

        records = sink.records
        assert len(records) >= 2
        for prev, cur in zip(records, records[1:]):
            assert distance_meters(prev, cur) > 50
        assert gate.stats.accepted == len(records)

    async def test_simultaneous_identical_fixes_accept_once(self):
        sink = RecordingSink()
        gate = MovementGate(sink=sink)
        decisions = await asyncio.gather(*(gate.evaluate(_fix(41.0)) for _ in range(10)))
        assert sum(d.accepted for d in decisions) == 1
        assert len(sink.records) == 1
