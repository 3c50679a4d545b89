"""
Movement Gate
=============

Stateful filter deciding whether a new fix is persisted.

A fix is accepted when it is the first one ever, or when it lies more than
``threshold_m`` from the most recently accepted record, regardless of which
producer supplied either. Evaluation is serialized by a single lock that
is held across the durable write, so two near-simultaneous fixes cannot
both be accepted, and ``last_accepted`` only advances once the record is
actually stored. Cancelling a caller mid-write does not split the two: the
write and the state update complete before the cancellation propagates.

Usage:
    gate = MovementGate(threshold_m=50.0, sink=repository)
    decision = await gate.evaluate(fix)
    if decision.accepted:
        print(decision.record.id)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Protocol

from ..domain.errors import PersistenceError
from ..domain.models import Decision, Fix, LocationRecord, RejectReason
from ..infrastructure.gps.distance import distance_meters

logger = logging.getLogger(__name__)


class RecordSink(Protocol):
    async def append(
        self,
        latitude: float,
        longitude: float,
        timestamp_ms: int,
        synced: bool = False,
    ) -> LocationRecord: ...


@dataclass
class GateState:
    """Most recently accepted record, shared by every producer."""

    last_accepted: LocationRecord | None = None


@dataclass
class GateStats:
    accepted: int = 0
    rejected: dict[RejectReason, int] = field(default_factory=dict)

    @property
    def rejected_total(self) -> int:
        return sum(self.rejected.values())

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "rejected": {reason.value: n for reason, n in self.rejected.items()},
        }


class MovementGate:
    """Single-writer accept/reject filter enforcing minimum record spacing."""

    def __init__(
        self,
        threshold_m: float = 50.0,
        sink: RecordSink | None = None,
        state: GateState | None = None,
    ) -> None:
        self.threshold_m = threshold_m
        self._sink = sink
        self._state = state or GateState()
        self._lock = asyncio.Lock()
        self._closed = False
        self._local_ids = itertools.count(1)
        self.stats = GateStats()

    @property
    def state(self) -> GateState:
        """Snapshot of the gate state."""
        return GateState(last_accepted=self._state.last_accepted)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def evaluate(self, fix: Fix) -> Decision:
        """Accept or reject a fix. Never raises for bad input or failed writes."""
        async with self._lock:
            if self._closed:
                return self._reject(RejectReason.STOPPED)

            if not fix.is_well_formed:
                logger.debug("Rejected malformed fix %s", fix)
                return self._reject(RejectReason.MALFORMED)

            last = self._state.last_accepted
            distance: float | None = None
            if last is not None:
                distance = distance_meters(last, fix)
                if not distance > self.threshold_m:
                    logger.debug(
                        "Skipped fix (%.0fm <= %.0fm)", distance, self.threshold_m
                    )
                    return self._reject(RejectReason.BELOW_THRESHOLD, distance)

            commit = asyncio.ensure_future(self._persist_and_commit(fix, distance))
            try:
                return await asyncio.shield(commit)
            except asyncio.CancelledError:
                # The write may already be durable: finish it so the gate
                # state matches the store before the lock is released.
                await asyncio.wait({commit})
                raise

    async def _persist_and_commit(self, fix: Fix, distance: float | None) -> Decision:
        try:
            record = await self._persist(fix)
        except PersistenceError as e:
            logger.warning("Fix not saved, gate state kept: %s", e)
            return self._reject(RejectReason.PERSISTENCE_FAILED, distance)

        self._state.last_accepted = record
        self.stats.accepted += 1
        if distance is None:
            logger.info("Saved location (first) #%d", record.id)
        else:
            logger.info("Saved location #%d (%.0fm)", record.id, distance)
        return Decision.accept(record, distance)

    async def _persist(self, fix: Fix) -> LocationRecord:
        if self._sink is None:
            return LocationRecord(
                id=next(self._local_ids),
                latitude=fix.latitude,
                longitude=fix.longitude,
                timestamp_ms=fix.captured_at_ms,
            )
        return await self._sink.append(
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp_ms=fix.captured_at_ms,
        )

    def _reject(self, reason: RejectReason, distance: float | None = None) -> Decision:
        self.stats.rejected[reason] = self.stats.rejected.get(reason, 0) + 1
        return Decision.reject(reason, distance)

    async def rehydrate(self, record: LocationRecord | None) -> None:
        """Restore ``last_accepted`` from storage after a restart."""
        async with self._lock:
            self._state.last_accepted = record
        if record is not None:
            logger.info("Gate rehydrated from record #%d", record.id)

    async def close(self) -> None:
        """Stop accepting fixes. Returns after any in-flight evaluation."""
        async with self._lock:
            self._closed = True

    def reopen(self) -> None:
        self._closed = False
