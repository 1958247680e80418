# src/taskloop/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the scheduler.

Actions, runtime checks and log sinks are plain callables; these Protocols
only document the shape the registry expects. Variants are told apart by
presence/absence, never by subclassing.
"""

from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..tasks.task_entry import TaskEntry
    from ..tasks.task_models import LogLevel


class TaskAction(Protocol):
    """
    Unit of work.

    May accept the owning entry as its single argument, or nothing at all.
    Coroutine functions are awaited (on the loop inline, or via asyncio.run on
    the entry's thread when isolated).
    """

    def __call__(self, *args: Any) -> Any: ...


class RuntimeCheck(Protocol):
    """
    Called right before each run.

    Return a positive duration (timedelta or seconds) to postpone the run;
    None/zero/negative lets the run proceed.
    """

    def __call__(self, entry: TaskEntry) -> timedelta | float | int | None: ...


class LogSink(Protocol):
    """Receives every lifecycle event of every entry. Must not raise (failures are swallowed)."""

    def __call__(
            self,
            entry: TaskEntry,
            message: str,
            level: LogLevel,
            error: BaseException | None,
    ) -> None: ...


class SettingsLike(Protocol):
    busy_retry_seconds: float
    daemon_threads: bool
