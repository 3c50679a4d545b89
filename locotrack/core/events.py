"""
Pipeline Events
===============

Queue-backed notifications from the ingestion coordinator. Handlers run on
the bus task, so a slow or failing handler never blocks or breaks a
producer.

Usage:
    bus = EventBus()
    bus.subscribe(EventType.FIX_ACCEPTED, on_saved)
    await bus.start()
    ...
    await bus.stop()  # drains pending events first
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Handler = Callable[["Event"], Awaitable[None]]


class EventType(Enum):
    PIPELINE_STARTED = auto()
    PIPELINE_STOPPED = auto()

    FIX_ACCEPTED = auto()
    FIX_REJECTED = auto()
    PERSISTENCE_FAILED = auto()

    PRODUCER_STARTED = auto()
    PRODUCER_STOPPED = auto()
    PRODUCER_FAILED = auto()
    PERMISSION_DENIED = auto()
    WATCHDOG_RESTARTED = auto()


@dataclass(frozen=True)
class Event:
    type: EventType
    data: Any = None
    source: str = "system"
    timestamp: float = field(default_factory=time.time)


class EventBus:
    """Fan-out of pipeline events to async handlers, with bounded history."""

    def __init__(self, max_history: int = 500) -> None:
        self._handlers: dict[EventType, list[Handler]] = {}
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._history: deque[Event] = deque(maxlen=max_history)
        self._task: asyncio.Task | None = None
        self.handler_errors = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    async def emit(self, event_type: EventType, data: Any = None, source: str = "system") -> Event:
        """Queue an event; handlers run once the bus is started."""
        event = Event(type=event_type, data=data, source=source)
        await self._queue.put(event)
        return event

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._process_loop(), name="event-bus")
            logger.debug("Event bus started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Deliver queued events, then stop the bus task."""
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Event queue not drained after %.1fs, %d dropped", timeout, self._queue.qsize())
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Event bus stopped")

    async def _process_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        self._history.append(event)
        for handler in self._handlers.get(event.type, ()):
            try:
                await handler(event)
            except Exception as e:
                self.handler_errors += 1
                logger.error("Handler %s failed on %s: %s", handler.__name__, event.type.name, e)

    def get_history(self, event_type: EventType | None = None, limit: int = 100) -> list[Event]:
        events = [e for e in self._history if event_type is None or e.type is event_type]
        return events[-limit:]
