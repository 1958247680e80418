# src/taskloop/tasks/task_entry.py

from __future__ import annotations

"""
Task entry.

One registered task: its configuration, run state and its own timer.

Run cycle:
  idle -> verifying -> (postponed | running) -> completed/failed -> rescheduled

Each cycle ends by re-arming a single asyncio timer (loop.call_later), so a
long-lived entry never grows the call stack. Timer handles are only touched on
the event loop thread; work arriving from other threads is marshalled with
call_soon_threadsafe.
"""

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from ..core.ports import RuntimeCheck, TaskAction
from .task_models import LogLevel, RunState, as_timedelta, normalize_daily_times

if TYPE_CHECKING:
    from .task_registry import TaskRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
    inspect.Parameter.VAR_POSITIONAL,
)


def _accepts_entry(fn: Callable[..., Any]) -> bool:
    """True when fn can take the entry as its first positional argument."""
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return True
    return any(p.kind in _POSITIONAL for p in params)


class TaskEntry:
    """
    A named unit of work plus everything needed to decide when to run it next.

    Schedule precedence per cycle: postponement > interval > daily times.
    Daily times only ever look at *today*: once every configured time has
    passed the entry goes dormant until it is triggered manually.

    Cancellation is cooperative. stop() sets `cancel_event`; isolated actions
    should check `entry.cancelled` between steps. Threads are never killed, so
    an action that ignores the token finishes its current unit of work.
    """

    def __init__(
            self,
            name: str,
            action: TaskAction,
            *,
            interval: timedelta | float | None = None,
            daily_times: Iterable[time | datetime | str] | None = None,
            run_at_register: bool = True,
            run_isolated: bool = False,
            verify_at_runtime: RuntimeCheck | None = None,
            busy_retry: timedelta | float = 1.0,
            daemon_threads: bool = True,
            clock: Clock = datetime.now,
    ) -> None:
        self.name = name
        self.action = action
        self.interval = as_timedelta(interval)
        if self.interval is not None and self.interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self.daily_times = normalize_daily_times(daily_times)
        self.run_at_register = bool(run_at_register)
        self.run_isolated = bool(run_isolated)
        self.verify_at_runtime = verify_at_runtime
        self.busy_retry = as_timedelta(busy_retry) or timedelta(seconds=1)

        self.enabled = True
        self.removed = False
        self.stopped = False
        self.is_running = False
        self.state = RunState.IDLE

        self._clock = clock
        self.created = clock()
        self.last_attempted_run: datetime | None = None
        self.last_run_started: datetime | None = None
        self.last_run_ended: datetime | None = None
        self.next_run_at: datetime | None = None

        self.errors: list[BaseException] = []

        self._pass_entry = _accepts_entry(action)
        self._daemon_threads = daemon_threads
        self._cancel = threading.Event()
        self._registry: TaskRegistry | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._thread: threading.Thread | None = None
        self._task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return (
            f"TaskEntry(name={self.name!r}, enabled={self.enabled}, state={self.state.value}, "
            f"next_run_at={self.next_run_at})"
        )

    # ---- status ----

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    @property
    def cancelled(self) -> bool:
        """True once stop()/remove() asked the running action to wind down."""
        return self._cancel.is_set()

    @property
    def is_busy(self) -> bool:
        if self.is_running:
            return True
        t = self._thread
        return t is not None and t.is_alive()

    @property
    def is_dormant(self) -> bool:
        """Registered, nothing armed, nothing running: only a manual run wakes it up."""
        return not self.removed and self._timer is None and not self.is_busy

    @property
    def last_error(self) -> BaseException | None:
        return self.errors[-1] if self.errors else None

    # ---- wiring ----

    def _attach(self, registry: TaskRegistry, loop: asyncio.AbstractEventLoop) -> None:
        self._registry = registry
        self._loop = loop

    def _log(self, message: str, level: LogLevel, error: BaseException | None = None) -> None:
        if self._registry is not None:
            self._registry.log(self, message, level, error)
        else:
            logger.info("[%s] %s", self.name, message)

    def _call_in_loop(self, fn: Callable[[], None]) -> None:
        """Run fn on the entry's event loop: directly when already there, else thread-safely."""
        loop = self._loop
        if loop is None:
            fn()
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            fn()
            return

        try:
            loop.call_soon_threadsafe(fn)
        except RuntimeError:
            # Loop already closed (host shut down while an isolated run was finishing).
            logger.debug("Event loop closed, dropping callback for task %s", self.name)

    # ---- scheduling ----

    def next_delay(
            self,
            postpone: timedelta | None = None,
            *,
            now: datetime | None = None,
    ) -> timedelta | None:
        """
        How long to wait before the next run, or None when nothing is due.

        - postpone (from the runtime check) wins,
        - then the fixed interval,
        - then the first of today's daily times strictly after `now`.
        """
        if postpone is not None:
            return postpone

        if self.interval is not None:
            return self.interval

        if self.daily_times:
            if now is None:
                now = self._clock()
            candidates = sorted(
                now.replace(hour=t.hour, minute=t.minute, second=t.second, microsecond=0)
                for t in self.daily_times
            )
            for candidate in candidates:
                if candidate > now:
                    return candidate - now

        return None

    def queue_next_run(self, postpone: timedelta | None = None) -> None:
        """Compute the next wait and arm the timer, or go dormant. Loop thread only."""
        if self.removed or self.stopped:
            return

        delay = self.next_delay(postpone)
        if delay is None:
            self._cancel_timer()
            logger.debug("Task %s has no further run time; dormant", self.name)
            return

        self._arm(delay)

    def _arm(self, delay: timedelta) -> None:
        loop = self._loop
        if loop is None:
            raise RuntimeError(f"task {self.name!r} is not attached to an event loop")

        # At most one armed timer per entry.
        self._cancel_timer()

        seconds = max(0.0, delay.total_seconds())
        self._timer = loop.call_later(seconds, self._on_timer)
        self.next_run_at = self._clock() + delay
        logger.debug("Task %s armed: next run in %.3fs (at %s)", self.name, seconds, self.next_run_at)

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        self.next_run_at = None
        if timer is not None:
            timer.cancel()

    def _on_timer(self) -> None:
        self._timer = None
        self.next_run_at = None
        if self.removed:
            return
        self.run()

    # ---- run procedure ----

    def run(self) -> None:
        """
        Attempt a run now. Loop thread only; use trigger() from elsewhere.

        Never raises for failures of the action or the runtime check: they are
        recorded in `errors`, logged, and the entry is rescheduled as usual.
        """
        if self.removed:
            return

        if not self.enabled:
            self.state = RunState.SKIPPED
            self._log("Task is disabled, skipping run", LogLevel.WARNING)
            self.queue_next_run()
            return

        self.last_attempted_run = self._clock()

        if self.verify_at_runtime is not None:
            self.state = RunState.VERIFYING
            try:
                postpone = as_timedelta(self.verify_at_runtime(self))
            except Exception as exc:
                self.state = RunState.FAILED
                self._record_error(exc, "Runtime check failed, skipping run")
                self.queue_next_run()
                return

            if postpone is not None and postpone > timedelta(0):
                self.state = RunState.POSTPONED
                self._log(f"Run postponed by {postpone}", LogLevel.INFO)
                self.queue_next_run(postpone)
                return

        if self.is_busy:
            self.state = RunState.RUNNING
            self._log(
                f"Previous run still in progress, checking again in {self.busy_retry}",
                LogLevel.WARNING,
            )
            self.queue_next_run(self.busy_retry)
            return

        self._cancel.clear()

        if self.run_isolated:
            self._start_thread()
        elif inspect.iscoroutinefunction(self.action):
            self._start_inline_task()
        else:
            self._execute()
            self.queue_next_run()

    def trigger(self) -> None:
        """Manual run request. Safe to call from any thread; also wakes a stopped entry."""
        if self.removed:
            return
        self.stopped = False
        self._call_in_loop(self.run)

    def _call_action(self) -> Any:
        if self._pass_entry:
            return self.action(self)
        return self.action()

    def _begin(self) -> None:
        self.is_running = True
        self.state = RunState.RUNNING
        self.last_run_started = self._clock()
        self._log("Run started", LogLevel.INFO)

    def _finish(self, error: Exception | None) -> None:
        self.last_run_ended = self._clock()
        self.is_running = False
        if error is None:
            self.state = RunState.COMPLETED
            self._log("Run completed", LogLevel.INFO)
        else:
            self.state = RunState.FAILED
            self._record_error(error, "Run failed")

    def _record_error(self, error: BaseException, message: str) -> None:
        self.errors.append(error)
        self._log(f"{message}: {error!r}", LogLevel.EXCEPTION, error)

    def _execute(self) -> None:
        """Invoke the action on the current thread, containing any failure."""
        self._begin()
        try:
            if inspect.iscoroutinefunction(self.action):
                asyncio.run(self._call_action())
            else:
                self._call_action()
        except Exception as exc:
            self._finish(exc)
        else:
            self._finish(None)

    def _start_thread(self) -> None:
        # Mark busy before the thread exists so a racing trigger sees it.
        self.is_running = True
        t = threading.Thread(
            target=self._thread_main,
            name=f"taskloop:{self.name}",
            daemon=self._daemon_threads,
        )
        self._thread = t
        t.start()

    def _thread_main(self) -> None:
        self._execute()
        if self.removed or self.stopped:
            return
        self._call_in_loop(self.queue_next_run)

    def _start_inline_task(self) -> None:
        loop = self._loop
        if loop is None:
            raise RuntimeError(f"task {self.name!r} is not attached to an event loop")
        self.is_running = True
        task = loop.create_task(self._run_inline_async(), name=f"taskloop:{self.name}")
        task.add_done_callback(self._inline_done)
        self._task = task

    async def _run_inline_async(self) -> None:
        self._begin()
        try:
            await self._call_action()
        except Exception as exc:
            self._finish(exc)
        else:
            self._finish(None)

        self.queue_next_run()

    def _inline_done(self, task: asyncio.Task[None]) -> None:
        self._task = None
        # Also reached when cancelled before the coroutine's first step.
        if task.cancelled():
            self.last_run_ended = self._clock()
            self.is_running = False
            self.state = RunState.CANCELLED
            self._log("Run cancelled", LogLevel.WARNING)

    # ---- control ----

    def pause(self) -> None:
        self.enabled = False

    def resume(self) -> None:
        self.enabled = True

    def stop(self) -> None:
        """Disable, drop the armed timer and ask any in-flight run to wind down."""
        self.enabled = False
        self.stopped = True
        self._cancel.set()
        self._call_in_loop(self._halt)

    def _halt(self) -> None:
        self._cancel_timer()
        task = self._task
        if task is None or task.done():
            return
        # A coroutine stopping or removing its own entry finishes its run normally.
        if task is asyncio.current_task():
            return
        task.cancel()

    def retire(self) -> None:
        """Terminal: stop and forget the schedule. The entry never runs again."""
        self.stop()
        self.removed = True
        self.interval = None
        self.daily_times = ()
        self.verify_at_runtime = None
        self.next_run_at = None

    def join(self, timeout: float | None = None) -> None:
        """Wait for an isolated run in progress (no-op otherwise)."""
        t = self._thread
        if t is None or t is threading.current_thread():
            return
        t.join(timeout=timeout)
