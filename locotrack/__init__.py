"""locotrack - position ingestion, movement filtering, storage and trip analytics."""

__version__ = "0.1.0"
