"""locotrack Domain Models - Pydantic models for core entities."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Fix(BaseModel):
    """Raw position reading from a position source."""

    latitude: float
    longitude: float
    captured_at_ms: int

    @property
    def is_well_formed(self) -> bool:
        """Finite coordinates within valid degree ranges."""
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            return False
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0


class LocationRecord(BaseModel):
    """Persisted, accepted fix."""

    model_config = ConfigDict(frozen=True)

    id: int
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp_ms: int
    synced: bool = False


class Trip(BaseModel):
    """Maximal run of records without an internal gap >= the trip gap."""

    start_time: int
    end_time: int
    duration_ms: int
    distance_meters: float
    points: list[LocationRecord] = Field(default_factory=list)

    @property
    def point_count(self) -> int:
        return len(self.points)

    @property
    def average_speed_kmh(self) -> float:
        """Path distance over duration, 0 when duration is 0."""
        hours = self.duration_ms / (1000 * 60 * 60)
        if hours <= 0:
            return 0.0
        return (self.distance_meters / 1000.0) / hours


class RejectReason(str, Enum):
    """Why the movement gate discarded a fix."""

    BELOW_THRESHOLD = "below_threshold"
    MALFORMED = "malformed"
    PERSISTENCE_FAILED = "persistence_failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Decision:
    """Outcome of a single gate evaluation."""

    accepted: bool
    record: LocationRecord | None = None
    reason: RejectReason | None = None
    distance_m: float | None = None

    @classmethod
    def accept(cls, record: LocationRecord, distance_m: float | None = None) -> Decision:
        return cls(accepted=True, record=record, distance_m=distance_m)

    @classmethod
    def reject(cls, reason: RejectReason, distance_m: float | None = None) -> Decision:
        return cls(accepted=False, reason=reason, distance_m=distance_m)
