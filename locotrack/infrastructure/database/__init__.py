"""Database infrastructure - SQLite for location records."""

from .async_repository import AsyncLocationRepository
from .schema import LOCATIONS_SCHEMA

__all__ = [
    "LOCATIONS_SCHEMA",
    "AsyncLocationRepository",
]
