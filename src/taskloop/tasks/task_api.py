# src/taskloop/tasks/task_api.py

from __future__ import annotations

import inspect
from datetime import datetime, time
from typing import Any

from ..core.ports import RuntimeCheck, TaskAction
from .task_entry import TaskEntry, _accepts_entry
from .task_registry import TaskRegistry


def every(
    registry: TaskRegistry,
    name: str,
    action: TaskAction,
    *,
    seconds: float,
    run_at_register: bool = False,
    run_isolated: bool = False,
    verify_at_runtime: RuntimeCheck | None = None,
) -> TaskEntry:
    """
    Convenience helper: run `action` every `seconds`.
    Unlike register(), the first run waits one full interval by default.
    """
    return registry.register(
        name,
        action,
        interval=float(seconds),
        run_at_register=run_at_register,
        run_isolated=run_isolated,
        verify_at_runtime=verify_at_runtime,
    )


def daily_at(
    registry: TaskRegistry,
    name: str,
    action: TaskAction,
    *times: time | datetime | str,
    run_isolated: bool = False,
    verify_at_runtime: RuntimeCheck | None = None,
) -> TaskEntry:
    """
    Run `action` at the given times of day ("HH:MM", "HH:MM:SS", time or datetime).

    NOTE: only today's remaining times are considered; after the last one the
    task stays dormant until it is run manually.
    """
    return registry.register(
        name,
        action,
        daily_times=times,
        run_at_register=False,
        run_isolated=run_isolated,
        verify_at_runtime=verify_at_runtime,
    )


def run_once(
    registry: TaskRegistry,
    name: str,
    action: TaskAction,
    *,
    delay_seconds: float = 0.0,
    run_isolated: bool = False,
) -> TaskEntry:
    """
    One-shot task: runs once (now, or after delay_seconds) and then removes itself.
    Failures are recorded on the entry like any other run.
    """
    pass_entry = _accepts_entry(action)

    def _call(entry: TaskEntry) -> Any:
        return action(entry) if pass_entry else action()

    if inspect.iscoroutinefunction(action):

        async def _once_async(entry: TaskEntry) -> None:
            try:
                await _call(entry)
            finally:
                registry.remove(entry.name)

        wrapped: TaskAction = _once_async
    else:

        def _once(entry: TaskEntry) -> None:
            try:
                _call(entry)
            finally:
                registry.remove(entry.name)

        wrapped = _once

    delay = max(0.0, float(delay_seconds))
    if delay == 0.0:
        return registry.register(name, wrapped, run_at_register=True, run_isolated=run_isolated)

    return registry.register(
        name,
        wrapped,
        interval=delay,
        run_at_register=False,
        run_isolated=run_isolated,
    )


def describe(entry: TaskEntry) -> dict[str, Any]:
    """Diagnostic snapshot of an entry (for logs, status commands, etc.)."""

    def _ts(value: datetime | None) -> str | None:
        return value.isoformat(timespec="seconds") if value is not None else None

    return {
        "name": entry.name,
        "state": entry.state.value,
        "enabled": entry.enabled,
        "removed": entry.removed,
        "stopped": entry.stopped,
        "dormant": entry.is_dormant,
        "running": entry.is_busy,
        "isolated": entry.run_isolated,
        "interval_seconds": entry.interval.total_seconds() if entry.interval is not None else None,
        "daily_times": [t.isoformat() for t in entry.daily_times],
        "created": _ts(entry.created),
        "last_attempted_run": _ts(entry.last_attempted_run),
        "last_run_started": _ts(entry.last_run_started),
        "last_run_ended": _ts(entry.last_run_ended),
        "next_run_at": _ts(entry.next_run_at),
        "error_count": len(entry.errors),
        "last_error": repr(entry.last_error) if entry.last_error is not None else None,
    }
