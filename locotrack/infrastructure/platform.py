"""
Platform Capabilities
=====================

Abstract permission-state and task-scheduling capabilities consumed by the
ingestion coordinator, plus in-process implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..tools.supervisor import TaskFactory, TaskSupervisor


@runtime_checkable
class PermissionProvider(Protocol):
    """Foreground/background position authorization."""

    def foreground_granted(self) -> bool: ...

    def background_granted(self) -> bool: ...


@dataclass
class StaticPermissions:
    """Permission state that only changes when assigned."""

    foreground: bool = True
    background: bool = True

    def foreground_granted(self) -> bool:
        return self.foreground

    def background_granted(self) -> bool:
        return self.background


@runtime_checkable
class TaskScheduler(Protocol):
    """Named background task registration."""

    def register(
        self,
        name: str,
        factory: TaskFactory,
        interval_secs: float | None = None,
    ) -> bool: ...

    async def unregister(self, name: str) -> bool: ...

    def is_registered(self, name: str) -> bool: ...

    def is_running(self, name: str) -> bool: ...


__all__ = [
    "PermissionProvider",
    "StaticPermissions",
    "TaskScheduler",
    "TaskSupervisor",
]
