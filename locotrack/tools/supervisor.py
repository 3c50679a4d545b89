from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..domain.errors import ProducerStartError

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[None]]


@dataclass
class TaskSpec:
    name: str
    factory: TaskFactory
    interval_secs: float | None = None  # None = run once until the coroutine ends


@dataclass
class TaskState:
    task: asyncio.Task | None = None
    failures: int = 0
    backoff: float = 0.0
    last_start_ts: float = 0.0
    restarts: int = 0
    runs: int = 0


class TaskSupervisor:
    """Asyncio task scheduler with named registration, run counters and backoff."""

    def __init__(
        self,
        backoff_initial_secs: float = 1.0,
        backoff_cap_secs: float = 60.0,
        jitter_frac: float = 0.2,
    ) -> None:
        self.backoff_initial_secs = backoff_initial_secs
        self.backoff_cap_secs = backoff_cap_secs
        self.jitter_frac = jitter_frac
        self.name_to_spec: dict[str, TaskSpec] = {}
        self.name_to_state: dict[str, TaskState] = {}
        self.task_failures_total: dict[str, int] = {}
        self.task_restarts_total: dict[str, int] = {}
        self.task_backoff_seconds: dict[str, float] = {}

    def _jitter(self, base: float) -> float:
        delta = base * self.jitter_frac
        return max(0.0, base + random.uniform(-delta, delta))

    def register(
        self,
        name: str,
        factory: TaskFactory,
        interval_secs: float | None = None,
    ) -> bool:
        """
        Register and start a named task.

        Re-registering a task that is still running is a no-op. Returns True
        when a task was (re)started.
        """
        spec = TaskSpec(name=name, factory=factory, interval_secs=interval_secs)
        state = self.name_to_state.setdefault(name, TaskState())
        self.name_to_spec[name] = spec
        if state.task and not state.task.done():
            return False

        runner = self._run_periodic(spec, interval_secs) if interval_secs else self._run_once(spec)
        try:
            state.task = asyncio.get_running_loop().create_task(runner, name=name)
        except RuntimeError as e:
            runner.close()
            raise ProducerStartError(f"cannot start task {name}: {e}") from e

        state.last_start_ts = time.time()
        state.restarts += 1
        self.task_restarts_total[name] = self.task_restarts_total.get(name, 0) + 1
        logger.info("Task %s started (interval=%s)", name, interval_secs)
        return True

    async def unregister(self, name: str) -> bool:
        """Cancel and forget a task. Returns True if it was registered."""
        spec = self.name_to_spec.pop(name, None)
        state = self.name_to_state.get(name)
        if state and state.task and not state.task.done():
            state.task.cancel()
            try:
                await state.task
            except asyncio.CancelledError:
                pass
        if state:
            state.task = None
        if spec:
            logger.info("Task %s unregistered", name)
        return spec is not None

    def is_registered(self, name: str) -> bool:
        return name in self.name_to_spec

    def is_running(self, name: str) -> bool:
        state = self.name_to_state.get(name)
        return bool(state and state.task and not state.task.done())

    def _fail(self, spec: TaskSpec, exc: BaseException) -> None:
        state = self.name_to_state.setdefault(spec.name, TaskState())
        state.failures += 1
        self.task_failures_total[spec.name] = self.task_failures_total.get(spec.name, 0) + 1
        logger.warning("Task %s failed (%d total): %s", spec.name, state.failures, exc)

    def _escalate_backoff(self, spec: TaskSpec) -> float:
        state = self.name_to_state.setdefault(spec.name, TaskState())
        if state.backoff == 0:
            state.backoff = self.backoff_initial_secs
        else:
            state.backoff = min(state.backoff * 2, self.backoff_cap_secs)
        self.task_backoff_seconds[spec.name] = state.backoff
        return state.backoff

    def _succeed(self, spec: TaskSpec) -> None:
        state = self.name_to_state.setdefault(spec.name, TaskState())
        state.runs += 1
        state.backoff = 0.0
        self.task_backoff_seconds[spec.name] = 0.0

    async def _run_once(self, spec: TaskSpec) -> None:
        try:
            await spec.factory()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(spec, e)
        else:
            self._succeed(spec)
            logger.info("Task %s finished", spec.name)

    async def _run_periodic(self, spec: TaskSpec, interval: float) -> None:
        """Run the factory every ``interval`` seconds, retrying sooner after failures."""
        delay = interval
        while True:
            await asyncio.sleep(delay)
            try:
                await spec.factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._fail(spec, e)
                delay = min(interval, self._jitter(self._escalate_backoff(spec)))
            else:
                self._succeed(spec)
                delay = interval

    async def stop_all(self) -> None:
        for name in list(self.name_to_spec):
            await self.unregister(name)
