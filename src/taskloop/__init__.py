"""In-process task scheduler: interval, time-of-day and immediate tasks with pause/stop control."""

from .tasks.task_entry import TaskEntry
from .tasks.task_models import LogLevel, RunState, TaskLoopError, ValidationError
from .tasks.task_registry import TaskRegistry
from .tasks.task_runner import BackgroundScheduler, start_in_background

__all__ = [
    "BackgroundScheduler",
    "LogLevel",
    "RunState",
    "TaskEntry",
    "TaskLoopError",
    "TaskRegistry",
    "ValidationError",
    "start_in_background",
]
