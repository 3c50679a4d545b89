"""Exception hierarchy for the tracking pipeline."""

from __future__ import annotations


class LocotrackError(Exception):
    """Base class for all pipeline errors."""


class InvalidRangeError(LocotrackError, ValueError):
    """Time range query with from >= to."""

    def __init__(self, from_ms: int, to_ms: int) -> None:
        self.from_ms = from_ms
        self.to_ms = to_ms
        super().__init__(
            f"invalid time range: from_ms ({from_ms}) must be less than to_ms ({to_ms})"
        )


class PersistenceError(LocotrackError):
    """A record could not be durably written."""


class ProducerStartError(LocotrackError):
    """A producer could not be registered or started."""
