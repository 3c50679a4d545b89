from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator


class AccuracyEnum(str, Enum):
    LOW = "low"
    BALANCED = "balanced"
    HIGH = "high"


class ProducerIntervals(BaseModel):
    """Cadence requested from a position source."""
    min_time_interval_ms: int = Field(5000, ge=1)
    min_distance_interval_m: float = Field(10.0, ge=0)


class TrackingConfig(BaseModel):
    move_threshold_m: float = Field(50.0, ge=0)
    accuracy: AccuracyEnum = Field(AccuracyEnum.BALANCED)
    foreground: ProducerIntervals = Field(default_factory=ProducerIntervals)
    background: ProducerIntervals = Field(default_factory=ProducerIntervals)
    background_enabled: bool = Field(False)  # Resume background producer on start


class TripConfig(BaseModel):
    gap_ms: int = Field(10 * 60 * 1000, ge=1)
    min_points: int = Field(2, ge=1)
    timezone: str = Field("UTC")

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value


class WatchdogConfig(BaseModel):
    enabled: bool = Field(True)
    interval_secs: float = Field(15 * 60, gt=0)
    backoff_initial_secs: float = Field(1.0, gt=0)
    backoff_cap_secs: float = Field(60.0, gt=0)
    jitter_frac: float = Field(0.2, ge=0.0, le=0.5)


class StorageConfig(BaseModel):
    db_path: Path = Field(Path("data/locations.db"))

    @field_validator("db_path")
    @classmethod
    def _expand_db_path(cls, value: Path) -> Path:
        return value.expanduser()


class GPSConfig(BaseModel):
    """GPS daemon configuration."""

    host: str = Field("localhost")
    port: int = Field(2947, ge=1, le=65535)
    timeout: float = Field(10.0, ge=1.0)
    reconnect_delay: float = Field(5.0, ge=0.1)
    mock_mode: bool = Field(False)  # Use mock GPS for testing
    mock_lat: float = Field(41.0082, ge=-90, le=90)  # Istanbul default
    mock_lon: float = Field(28.9784, ge=-180, le=180)


class PermissionsConfig(BaseModel):
    """Static grants used when no platform permission service is present."""
    foreground: bool = Field(True)
    background: bool = Field(True)


class LoggingConfig(BaseModel):
    level: str = Field("INFO")
    format: str = Field("%(asctime)s | %(name)s | %(levelname)s | %(message)s")

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {value}")
        return level


class LocotrackConfig(BaseModel):
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    trips: TripConfig = Field(default_factory=TripConfig)
    watchdog: WatchdogConfig = Field(default_factory=WatchdogConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    gps: GPSConfig = Field(default_factory=GPSConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Path) -> LocotrackConfig:
    with Path(path).expanduser().open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}
    try:
        return LocotrackConfig.model_validate(raw)
    except ValidationError as exc:  # pragma: no cover - formatting
        raise ValueError(str(exc)) from exc


def resolve_config_path(cli_path: Path | None) -> Path:
    """Resolve config path by priority: CLI, env, /etc/locotrack, repo configs."""
    candidates: list[Path] = []
    if cli_path:
        p = Path(cli_path).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    env = os.environ.get("LOCOTRACK_CONFIG")
    if env:
        p = Path(env).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    for p in [Path("/etc/locotrack/locotrack.yml"), Path("configs/locotrack.yml")]:
        if p.exists():
            return p.resolve()
        candidates.append(p)
    # Fallback to first candidate even if not exists to surface errors consistently
    return candidates[0] if candidates else Path("configs/locotrack.yml").resolve()
