"""
Position Sources
================

Abstract position-source capability plus simple in-process sources.

A source yields ``Fix`` values on a cadence described by ``SourceOptions``.
A source that stops yielding (permission revoked, device gone) simply ends
its stream; consumers treat that as "no data", not as an error.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ...domain.models import Fix
from .distance import distance_meters

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SourceOptions:
    """Cadence requested from a position source."""

    accuracy: str = "balanced"
    min_time_interval_ms: int = 5000
    min_distance_interval_m: float = 10.0


@runtime_checkable
class PositionSource(Protocol):
    """Capability that periodically yields raw position fixes."""

    def stream_fixes(self, options: SourceOptions) -> AsyncIterator[Fix]: ...

    async def stop(self) -> None: ...


class EmitPolicy:
    """
    Combined time/distance emission policy.

    A fix passes when at least ``min_time_interval_ms`` elapsed or the
    position moved at least ``min_distance_interval_m`` since the last
    emitted fix. The first fix always passes.
    """

    def __init__(self, options: SourceOptions) -> None:
        self.options = options
        self._last: Fix | None = None

    def should_emit(self, fix: Fix) -> bool:
        if self._last is None:
            self._last = fix
            return True

        elapsed = fix.captured_at_ms - self._last.captured_at_ms
        moved = distance_meters(self._last, fix)
        if elapsed >= self.options.min_time_interval_ms or moved >= self.options.min_distance_interval_m:
            self._last = fix
            return True
        return False

    def reset(self) -> None:
        self._last = None


class ReplayPositionSource:
    """
    Replays a fixed sequence of fixes verbatim.

    Used for simulation and tests; options are accepted but not applied.
    """

    def __init__(self, fixes: Iterable[Fix], delay: float = 0.0) -> None:
        self._fixes = list(fixes)
        self._delay = delay
        self._running = False
        self.emitted = 0

    async def stream_fixes(self, options: SourceOptions) -> AsyncIterator[Fix]:
        self._running = True
        for fix in self._fixes:
            if not self._running:
                break
            self.emitted += 1
            yield fix
            # Always yield control so concurrent producers interleave
            await asyncio.sleep(self._delay)
        self._running = False

    async def stop(self) -> None:
        self._running = False


class MockPositionSource:
    """
    Mock position source for development and simulation.

    Walks in a circle around a start point at the requested time interval.
    """

    def __init__(
        self,
        start_lat: float = 41.0082,  # Istanbul
        start_lon: float = 28.9784,
        radius_deg: float = 0.001,  # ~111 meters
        step_degrees: float = 5.0,
    ) -> None:
        self._start_lat = start_lat
        self._start_lon = start_lon
        self._radius = radius_deg
        self._step_degrees = step_degrees
        self._step = 0
        self._running = False

    async def stream_fixes(self, options: SourceOptions) -> AsyncIterator[Fix]:
        """Generate fake fixes in a walking pattern."""
        self._running = True
        interval = options.min_time_interval_ms / 1000.0
        logger.info("Mock position source started (every %.1fs)", interval)

        while self._running:
            angle = math.radians(self._step * self._step_degrees)
            fix = Fix(
                latitude=self._start_lat + self._radius * math.sin(angle),
                longitude=self._start_lon + self._radius * math.cos(angle),
                captured_at_ms=now_ms(),
            )
            self._step += 1
            yield fix
            await asyncio.sleep(interval)

    async def stop(self) -> None:
        self._running = False
