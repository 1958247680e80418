# src/taskloop/tasks/task_models.py

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, time, timedelta
from enum import StrEnum


class LogLevel(StrEnum):
    """Severity passed to log sinks."""

    INFO = "info"
    WARNING = "warning"
    EXCEPTION = "exception"


class RunState(StrEnum):
    """
    Where an entry is in its current run cycle.

    Notes:
    - "skipped" means the entry was disabled when its timer fired.
    - "cancelled" is only reached by an inline coroutine action cancelled via stop().
    """

    IDLE = "idle"
    VERIFYING = "verifying"
    POSTPONED = "postponed"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class TaskLoopError(Exception):
    """Base class for errors raised by taskloop."""


class ValidationError(TaskLoopError, ValueError):
    """Bad registration input: missing name/action, duplicate name, malformed schedule."""


def as_timedelta(value: timedelta | float | int | None) -> timedelta | None:
    """
    Normalize a duration.

    Accepts a timedelta or a number of seconds; None stays None.
    """
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected timedelta or seconds, got {type(value).__name__}")
    return timedelta(seconds=float(value))


def parse_time_of_day(raw: str) -> time:
    """Parse "HH:MM" or "HH:MM:SS" into a time."""
    parts = raw.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"invalid time of day: {raw!r}")
    try:
        nums = [int(p) for p in parts]
    except ValueError:
        raise ValueError(f"invalid time of day: {raw!r}") from None
    return time(*nums)


def normalize_daily_times(values: Iterable[time | datetime | str] | None) -> tuple[time, ...]:
    """
    Turn user input into a sorted, de-duplicated tuple of times of day.

    The date part of datetimes and any microseconds are dropped; only
    hour/minute/second take part in scheduling.
    """
    if not values:
        return ()

    out: set[time] = set()
    for v in values:
        if isinstance(v, datetime):
            t = v.time()
        elif isinstance(v, time):
            t = v
        elif isinstance(v, str):
            t = parse_time_of_day(v)
        else:
            raise TypeError(f"expected time, datetime or 'HH:MM[:SS]', got {type(v).__name__}")
        out.add(time(t.hour, t.minute, t.second))
    return tuple(sorted(out))
