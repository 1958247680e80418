# src/taskloop/tasks/task_registry.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Iterable
from datetime import datetime, time, timedelta

from ..config import get_settings
from ..core.ports import LogSink, RuntimeCheck, SettingsLike, TaskAction
from .task_entry import Clock, TaskEntry
from .task_models import LogLevel, ValidationError

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.EXCEPTION: logging.ERROR,
}


class TaskRegistry:
    """
    Owned collection of named task entries.

    Thread-safety:
    - the name -> entry map and the sink list are guarded by one RLock
    - every control method may be called from any thread; loop-bound work
      (timers, inline runs) is forwarded to the registry's event loop

    The event loop is the one passed in, or the loop running when the first
    task is registered.
    """

    def __init__(
            self,
            *,
            settings: SettingsLike | None = None,
            loop: asyncio.AbstractEventLoop | None = None,
            clock: Clock | None = None,
            sinks: Iterable[LogSink] | None = None,
    ) -> None:
        self._settings = settings if settings is not None else get_settings()
        self._loop = loop
        self._clock: Clock = clock or datetime.now
        self._entries: dict[str, TaskEntry] = {}
        self._sinks: list[LogSink] = list(sinks or [])
        self._lock = threading.RLock()

    # ---- low-level helpers ----

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError(
                    "TaskRegistry has no event loop: register from a running loop or pass loop="
                ) from None
        return self._loop

    # ---- public API ----

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    def register(
            self,
            name: str,
            action: TaskAction,
            *,
            interval: timedelta | float | None = None,
            daily_times: Iterable[time | datetime | str] | None = None,
            run_at_register: bool = True,
            run_isolated: bool = False,
            verify_at_runtime: RuntimeCheck | None = None,
    ) -> TaskEntry:
        """
        Add a task and start its schedule.

        With run_at_register the first run happens right away (synchronously
        when called on the loop thread); otherwise the first run is armed from
        the interval / daily times. Raises ValidationError on bad input.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required")
        name = name.strip()

        if action is None or not callable(action):
            raise ValidationError("action is required")

        if verify_at_runtime is not None and not callable(verify_at_runtime):
            raise ValidationError("verify_at_runtime must be callable")

        try:
            entry = TaskEntry(
                name,
                action,
                interval=interval,
                daily_times=daily_times,
                run_at_register=run_at_register,
                run_isolated=run_isolated,
                verify_at_runtime=verify_at_runtime,
                busy_retry=float(getattr(self._settings, "busy_retry_seconds", 1.0)),
                daemon_threads=bool(getattr(self._settings, "daemon_threads", True)),
                clock=self._clock,
            )
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid schedule for task {name!r}: {exc}") from exc

        loop = self._resolve_loop()

        with self._lock:
            if name in self._entries:
                raise ValidationError(f"task {name!r} already exists")
            entry._attach(self, loop)
            self._entries[name] = entry

        self.log(entry, "Task registered", LogLevel.INFO)

        if entry.run_at_register:
            entry.trigger()
        else:
            entry._call_in_loop(entry.queue_next_run)

        return entry

    def get(self, name: str) -> TaskEntry | None:
        with self._lock:
            return self._entries.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def pause(self, name: str) -> None:
        entry = self.get(name)
        if entry is None:
            return
        entry.pause()
        self.log(entry, "Task paused", LogLevel.INFO)

    def resume(self, name: str) -> None:
        entry = self.get(name)
        if entry is None:
            return
        entry.resume()
        self.log(entry, "Task resumed", LogLevel.INFO)

    def stop(self, name: str) -> None:
        entry = self.get(name)
        if entry is None:
            return
        entry.stop()
        self.log(entry, "Task stopped", LogLevel.INFO)

    def remove(self, name: str) -> None:
        with self._lock:
            entry = self._entries.pop(name, None)
        if entry is None:
            return
        entry.retire()
        self.log(entry, "Task removed", LogLevel.INFO)

    def run(self, name: str) -> None:
        """Manual trigger; unknown names are ignored."""
        entry = self.get(name)
        if entry is None:
            return
        entry.trigger()

    def shutdown(self, timeout: float | None = None) -> None:
        """
        Remove every task. With a timeout, also wait for isolated runs still in progress.

        Do not pass a timeout from the loop thread: joining there blocks the loop.
        """
        with self._lock:
            entries = list(self._entries.values())

        for entry in entries:
            self.remove(entry.name)

        if timeout is None:
            return
        for entry in entries:
            entry.join(timeout=timeout)
            if entry.is_busy:
                logger.warning("Task %s still running after shutdown timeout", entry.name)

    # ---- logging hook ----

    def add_log_sink(self, sink: LogSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def remove_log_sink(self, sink: LogSink) -> None:
        with self._lock:
            with contextlib.suppress(ValueError):
                self._sinks.remove(sink)

    def log(
            self,
            entry: TaskEntry,
            message: str,
            level: LogLevel,
            error: BaseException | None = None,
    ) -> None:
        """Write to the module logger and fan out to every sink. Never raises."""
        logger.log(
            _PY_LEVELS.get(level, logging.INFO),
            "[%s] %s",
            entry.name,
            message,
            exc_info=error,
        )

        with self._lock:
            sinks = list(self._sinks)

        for sink in sinks:
            try:
                sink(entry, message, level, error)
            except Exception:
                logger.debug("Log sink %r failed for task %s", sink, entry.name, exc_info=True)
