from __future__ import annotations

import asyncio
import importlib.metadata as md
import logging
from collections import Counter
from datetime import datetime
from zoneinfo import ZoneInfo
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .analytics.stats import format_distance, format_duration
from .config import LocotrackConfig, load_config, resolve_config_path
from .core.coordinator import IngestionCoordinator
from .core.events import Event, EventBus, EventType
from .core.query import LocationQuery
from .infrastructure.database.async_repository import AsyncLocationRepository
from .infrastructure.gps.gpsd_client import AsyncGPSClient
from .infrastructure.gps.gpsd_client import GPSConfig as GPSClientConfig
from .infrastructure.gps.sources import MockPositionSource, PositionSource
from .infrastructure.platform import StaticPermissions
from .tools.supervisor import TaskSupervisor

# Typer application: tests import this
app = typer.Typer(no_args_is_help=True, add_completion=False, help="locotrack CLI")
console = Console()

DEFAULT_CONFIG = Path("configs/locotrack.yml")


def _load(config: Path | None) -> LocotrackConfig:
    resolved = resolve_config_path(config)
    if not resolved.exists():
        console.print(f"Config {resolved} not found, using defaults")
        return LocotrackConfig()
    return load_config(resolved)


def _configure_logging(cfg: LocotrackConfig) -> None:
    logging.basicConfig(
        level=cfg.logging.level,
        format=cfg.logging.format,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _parse_time(value: str | None) -> int | None:
    """Epoch milliseconds or ISO-8601 datetime to epoch milliseconds."""
    if value is None:
        return None
    if value.lstrip("-").isdigit():
        return int(value)
    try:
        return int(datetime.fromisoformat(value).timestamp() * 1000)
    except ValueError as exc:
        raise typer.BadParameter(f"not an epoch-ms or ISO datetime: {value}") from exc


def _fmt_ts(ms: int, tz_name: str = "UTC") -> str:
    return datetime.fromtimestamp(ms / 1000.0, tz=ZoneInfo(tz_name)).strftime("%Y-%m-%d %H:%M:%S")


def _tally_events(bus: EventBus) -> Counter[str]:
    """Count outcome events for the run summary."""
    counts: Counter[str] = Counter()

    async def count(event: Event) -> None:
        counts[event.type.name.lower()] += 1

    for event_type in (
        EventType.FIX_ACCEPTED,
        EventType.FIX_REJECTED,
        EventType.PERSISTENCE_FAILED,
        EventType.PERMISSION_DENIED,
        EventType.PRODUCER_FAILED,
        EventType.WATCHDOG_RESTARTED,
    ):
        bus.subscribe(event_type, count)
    return counts


async def _open_repository(cfg: LocotrackConfig) -> AsyncLocationRepository:
    repo = AsyncLocationRepository(cfg.storage.db_path)
    await repo.init_schema()
    return repo


@app.command()
def version() -> None:
    """Print version information."""
    try:
        console.print(f"locotrack {md.version('locotrack')}")
    except md.PackageNotFoundError:
        from . import __version__

        console.print(f"locotrack {__version__}")
    raise typer.Exit(code=0)


@app.command(name="config-validate")
def config_validate(path: Path = typer.Argument(DEFAULT_CONFIG)) -> None:
    """Validate and show resolved configuration."""
    resolved = resolve_config_path(path)
    console.print(f"Using config: {resolved}")
    try:
        cfg = load_config(resolved)
    except (OSError, ValueError) as exc:
        console.print(f"Config validation failed: {exc}")
        raise typer.Exit(code=1) from exc
    console.print("Config OK.")
    console.print(f"- db: {cfg.storage.db_path}")
    console.print(f"- move threshold: {cfg.tracking.move_threshold_m} m")
    console.print(f"- trip gap: {cfg.trips.gap_ms} ms, min points: {cfg.trips.min_points}")


@app.command()
def config_which(path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c")) -> None:
    """Print resolved config path by priority rules."""
    console.print(str(resolve_config_path(path)))


async def _run_pipeline(cfg: LocotrackConfig, seconds: float, mock: bool) -> dict:
    repo = await _open_repository(cfg)
    fg_source: PositionSource
    bg_source: PositionSource
    if mock:
        fg_source = MockPositionSource(cfg.gps.mock_lat, cfg.gps.mock_lon)
        bg_source = MockPositionSource(cfg.gps.mock_lat, cfg.gps.mock_lon)
    else:
        gps_cfg = GPSClientConfig(
            host=cfg.gps.host,
            port=cfg.gps.port,
            timeout=cfg.gps.timeout,
            reconnect_delay=cfg.gps.reconnect_delay,
        )
        fg_source = AsyncGPSClient(gps_cfg)
        bg_source = AsyncGPSClient(gps_cfg)

    bus = EventBus()
    events = _tally_events(bus)
    await bus.start()
    coordinator = IngestionCoordinator(
        cfg,
        repo,
        foreground_source=fg_source,
        background_source=bg_source,
        permissions=StaticPermissions(
            foreground=cfg.permissions.foreground,
            background=cfg.permissions.background,
        ),
        scheduler=TaskSupervisor(
            backoff_initial_secs=cfg.watchdog.backoff_initial_secs,
            backoff_cap_secs=cfg.watchdog.backoff_cap_secs,
            jitter_frac=cfg.watchdog.jitter_frac,
        ),
        event_bus=bus,
    )
    try:
        await coordinator.start()
        await asyncio.sleep(seconds)
    finally:
        await coordinator.stop()
        await bus.stop()
    try:
        records = await repo.count()
    finally:
        await repo.close()
    status = coordinator.status()
    return {
        "records": records,
        "gate": status.gate,
        "foreground_permission": status.foreground_permission,
        "background_enabled": status.background_enabled,
        "last_error": status.last_error,
        "events": dict(events),
    }


@app.command()
def run(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c"),
    minutes: float = typer.Option(1.0, "--minutes", min=0.0),
    mock: bool = typer.Option(False, "--mock", help="Use a simulated position source"),
) -> None:
    """Run the ingestion pipeline for MINUTES."""
    cfg = _load(config)
    _configure_logging(cfg)
    console.print("Starting locotrack pipeline ...")
    summary = asyncio.run(_run_pipeline(cfg, minutes * 60, mock or cfg.gps.mock_mode))
    console.print(summary)
    console.print("locotrack pipeline stopped.")


@app.command()
def points(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c"),
    from_: str | None = typer.Option(None, "--from", help="Epoch ms or ISO datetime"),
    to: str | None = typer.Option(None, "--to", help="Epoch ms or ISO datetime"),
    limit: int = typer.Option(50, "--limit", min=1),
) -> None:
    """List stored locations, optionally restricted to a time window."""
    cfg = _load(config)
    from_ms, to_ms = _parse_time(from_), _parse_time(to)

    async def _query() -> list:
        query = LocationQuery(await _open_repository(cfg), cfg.trips)
        if from_ms is None and to_ms is None:
            return await query.all()
        return await query.by_time_range(
            from_ms if from_ms is not None else 0,
            to_ms if to_ms is not None else int(datetime.now().timestamp() * 1000),
        )

    try:
        records = asyncio.run(_query())
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    table = Table(title=f"Saved locations: {len(records)}")
    table.add_column("#", justify="right")
    table.add_column("Latitude")
    table.add_column("Longitude")
    table.add_column("Time")
    for index, record in enumerate(records[-limit:], start=max(1, len(records) - limit + 1)):
        table.add_row(str(index), f"{record.latitude:.5f}", f"{record.longitude:.5f}", _fmt_ts(record.timestamp_ms, cfg.trips.timezone))
    console.print(table)


@app.command()
def trips(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c"),
    from_: str | None = typer.Option(None, "--from", help="Epoch ms or ISO datetime"),
    to: str | None = typer.Option(None, "--to", help="Epoch ms or ISO datetime"),
) -> None:
    """Segment stored locations into trips."""
    cfg = _load(config)
    from_ms, to_ms = _parse_time(from_), _parse_time(to)

    async def _trips() -> list:
        query = LocationQuery(await _open_repository(cfg), cfg.trips)
        return await query.trips(from_ms, to_ms)

    try:
        result = asyncio.run(_trips())
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    table = Table(title=f"Trips: {len(result)}")
    table.add_column("Trip", justify="right")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Duration")
    table.add_column("Distance")
    table.add_column("Avg km/h", justify="right")
    table.add_column("Points", justify="right")
    for i, trip in enumerate(result, start=1):
        table.add_row(
            f"#{i}",
            _fmt_ts(trip.start_time, cfg.trips.timezone),
            _fmt_ts(trip.end_time, cfg.trips.timezone),
            format_duration(trip.duration_ms),
            format_distance(trip.distance_meters),
            f"{trip.average_speed_kmh:.1f}",
            str(trip.point_count),
        )
    console.print(table)


@app.command()
def stats(config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c")) -> None:
    """Show trip analytics."""
    cfg = _load(config)

    async def _summary():
        query = LocationQuery(await _open_repository(cfg), cfg.trips)
        return await query.summary()

    summary = asyncio.run(_summary())
    console.print({
        "total_trips": summary.total_trips,
        "today_trips": summary.today_trips,
        "week_trips": summary.week_trips,
        "total_distance": format_distance(summary.total_distance_m),
        "total_duration": format_duration(summary.total_duration_ms),
        "average_speed_kmh": round(summary.average_speed_kmh, 1),
        "longest_trip": format_distance(summary.longest_trip.distance_meters) if summary.longest_trip else None,
    })
    table = Table(title="Last 7 days")
    table.add_column("Day")
    table.add_column("Distance (km)", justify="right")
    table.add_column("Trips", justify="right")
    for day in summary.daily:
        table.add_row(day.day, f"{day.distance_km:.1f}", str(day.trips))
    console.print(table)


@app.command()
def count(config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c")) -> None:
    """Print number of stored locations."""
    cfg = _load(config)

    async def _count() -> int:
        return await (await _open_repository(cfg)).count()

    console.print(asyncio.run(_count()))


@app.command()
def clear(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c"),
    yes: bool = typer.Option(False, "--yes", help="Confirm irreversible deletion"),
) -> None:
    """Delete all stored locations."""
    if not yes:
        console.print("Refusing to clear without --yes")
        raise typer.Exit(code=1)
    cfg = _load(config)

    async def _clear() -> int:
        return await (await _open_repository(cfg)).clear_all()

    deleted = asyncio.run(_clear())
    console.print(f"Deleted {deleted} locations.")


cli = typer.main.get_command(app)


if __name__ == "__main__":
    app()
