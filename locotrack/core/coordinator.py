"""
Ingestion Coordinator
=====================

Owns the foreground producer, the background producer and the watchdog,
and funnels every fix from both producers through one MovementGate into
the location store.

Usage:
    coordinator = IngestionCoordinator(
        config, repository,
        foreground_source=AsyncGPSClient(),
        background_source=AsyncGPSClient(),
        permissions=StaticPermissions(),
        scheduler=TaskSupervisor(),
    )
    await coordinator.start()
    enabled = await coordinator.toggle_background()
    ...
    await coordinator.stop()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..config import LocotrackConfig, ProducerIntervals
from ..domain.errors import ProducerStartError
from ..domain.models import RejectReason
from ..infrastructure.gps.sources import PositionSource, SourceOptions
from .events import EventBus, EventType
from .gate import MovementGate

if TYPE_CHECKING:
    from ..infrastructure.database.async_repository import AsyncLocationRepository
    from ..infrastructure.platform import PermissionProvider, TaskScheduler

logger = logging.getLogger(__name__)

BG_TASK = "LOCATION_TRACKING_TASK"
WATCHDOG_TASK = "LOCATION_WATCHDOG_TASK"


@dataclass
class CoordinatorStatus:
    """Status flags surfaced to presentation layers."""

    running: bool = False
    foreground_active: bool = False
    background_enabled: bool = False
    background_running: bool = False
    foreground_permission: bool = False
    background_permission: bool = False
    watchdog_restarts: int = 0
    last_error: str | None = None
    gate: dict = field(default_factory=dict)


class IngestionCoordinator:
    """Routes fixes from concurrent producers through a single gate."""

    def __init__(
        self,
        config: LocotrackConfig,
        repository: AsyncLocationRepository,
        foreground_source: PositionSource,
        background_source: PositionSource,
        permissions: PermissionProvider,
        scheduler: TaskScheduler,
        event_bus: EventBus | None = None,
    ) -> None:
        self.config = config
        self.repository = repository
        self.foreground_source = foreground_source
        self.background_source = background_source
        self.permissions = permissions
        self.scheduler = scheduler
        self.event_bus = event_bus
        self.gate = MovementGate(
            threshold_m=config.tracking.move_threshold_m,
            sink=repository,
        )

        self._running = False
        self._fg_task: asyncio.Task | None = None
        self._background_enabled = config.tracking.background_enabled
        self._watchdog_restarts = 0
        self._last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def background_enabled(self) -> bool:
        return self._background_enabled

    def _options(self, intervals: ProducerIntervals) -> SourceOptions:
        return SourceOptions(
            accuracy=self.config.tracking.accuracy.value,
            min_time_interval_ms=intervals.min_time_interval_ms,
            min_distance_interval_m=intervals.min_distance_interval_m,
        )

    async def _emit(self, event_type: EventType, data: object = None) -> None:
        if self.event_bus is not None:
            await self.event_bus.emit(event_type, data=data, source="coordinator")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Rehydrate the gate and start producers allowed by permissions."""
        if self._running:
            logger.warning("IngestionCoordinator already running")
            return

        await self.gate.rehydrate(await self.repository.latest())
        self.gate.reopen()
        self._running = True

        await self._start_foreground()

        if self._background_enabled:
            await self._start_background()

        if self.config.watchdog.enabled:
            try:
                self.scheduler.register(
                    WATCHDOG_TASK,
                    self.watchdog_tick,
                    interval_secs=self.config.watchdog.interval_secs,
                )
            except ProducerStartError as e:
                self._record_error(f"watchdog registration failed: {e}")

        await self._emit(EventType.PIPELINE_STARTED)
        logger.info("IngestionCoordinator started")

    async def stop(self) -> None:
        """
        Stop all producers.

        The gate is closed first; once this returns no further fix is
        evaluated or accepted. Safe to call at any time.
        """
        await self.gate.close()
        was_running = self._running
        self._running = False

        if self._fg_task is not None:
            self._fg_task.cancel()
            try:
                await self._fg_task
            except asyncio.CancelledError:
                pass
            self._fg_task = None
        await self.foreground_source.stop()

        await self.scheduler.unregister(WATCHDOG_TASK)
        if self.scheduler.is_registered(BG_TASK):
            await self.scheduler.unregister(BG_TASK)
            await self.background_source.stop()

        if was_running:
            await self._emit(EventType.PIPELINE_STOPPED)
            logger.info("IngestionCoordinator stopped")

    async def toggle_background(self) -> bool:
        """Enable or disable the background producer. Returns the new state."""
        if self._background_enabled:
            self._background_enabled = False
            if self.scheduler.is_registered(BG_TASK):
                await self.scheduler.unregister(BG_TASK)
                await self.background_source.stop()
                await self._emit(EventType.PRODUCER_STOPPED, data=BG_TASK)
            logger.info("Background tracking disabled")
            return False

        if not self.permissions.background_granted():
            logger.info("Background permission not granted")
            await self._emit(EventType.PERMISSION_DENIED, data="background")
            return False

        self._background_enabled = True
        if self._running:
            await self._start_background()
        logger.info("Background tracking enabled")
        return True

    def status(self) -> CoordinatorStatus:
        return CoordinatorStatus(
            running=self._running,
            foreground_active=self._fg_task is not None and not self._fg_task.done(),
            background_enabled=self._background_enabled,
            background_running=self.scheduler.is_running(BG_TASK),
            foreground_permission=self.permissions.foreground_granted(),
            background_permission=self.permissions.background_granted(),
            watchdog_restarts=self._watchdog_restarts,
            last_error=self._last_error,
            gate=self.gate.stats.to_dict(),
        )

    # =========================================================================
    # Producers
    # =========================================================================

    async def _start_foreground(self) -> bool:
        if not self.permissions.foreground_granted():
            logger.info("Foreground permission not granted, foreground producer not started")
            await self._emit(EventType.PERMISSION_DENIED, data="foreground")
            return False

        options = self._options(self.config.tracking.foreground)
        self._fg_task = asyncio.create_task(
            self._run_foreground(options),
            name="foreground-producer",
        )
        await self._emit(EventType.PRODUCER_STARTED, data="foreground")
        return True

    async def _run_foreground(self, options: SourceOptions) -> None:
        try:
            await self._consume(self.foreground_source, options, "foreground")
        except Exception as e:
            self._record_error(f"foreground producer failed: {e}")
            await self._emit(EventType.PRODUCER_FAILED, data="foreground")

    async def _start_background(self) -> bool:
        if not self.permissions.background_granted():
            logger.info("Background permission not granted, background producer not started")
            await self._emit(EventType.PERMISSION_DENIED, data="background")
            return False

        options = self._options(self.config.tracking.background)

        async def run_background() -> None:
            await self._consume(self.background_source, options, "background")

        try:
            started = self.scheduler.register(BG_TASK, run_background)
        except ProducerStartError as e:
            self._record_error(f"background registration failed: {e}")
            await self._emit(EventType.PRODUCER_FAILED, data=BG_TASK)
            return False

        if started:
            await self._emit(EventType.PRODUCER_STARTED, data=BG_TASK)
        return started

    async def _consume(self, source: PositionSource, options: SourceOptions, origin: str) -> None:
        """Feed every fix from a source through the shared gate."""
        logger.info("%s producer started", origin.capitalize())
        async for fix in source.stream_fixes(options):
            if not self._running:
                break
            decision = await self.gate.evaluate(fix)
            if decision.accepted:
                await self._emit(EventType.FIX_ACCEPTED, data=decision.record)
                continue
            if decision.reason is RejectReason.STOPPED:
                break
            if decision.reason is RejectReason.PERSISTENCE_FAILED:
                self._record_error(f"{origin} fix at {fix.captured_at_ms} not persisted")
                await self._emit(EventType.PERSISTENCE_FAILED, data=fix)
            else:
                logger.debug("%s fix rejected: %s", origin, decision.reason.value)
                await self._emit(EventType.FIX_REJECTED, data=decision)
        logger.info("%s producer finished (no more data)", origin.capitalize())

    # =========================================================================
    # Watchdog
    # =========================================================================

    async def watchdog_tick(self) -> bool:
        """
        Re-arm the background producer if it should run but does not.

        Returns True when a restart was performed.
        """
        if not (self._running and self._background_enabled):
            return False
        if self.scheduler.is_running(BG_TASK):
            return False
        if not self.permissions.background_granted():
            logger.info("Watchdog: background permission revoked, not restarting")
            return False

        logger.warning("Watchdog: background producer not running, restarting")
        if await self._start_background():
            self._watchdog_restarts += 1
            await self._emit(EventType.WATCHDOG_RESTARTED, data=BG_TASK)
            return True
        return False

    def _record_error(self, message: str) -> None:
        self._last_error = message
        logger.warning(message)
