# src/taskloop/tasks/task_runner.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

from ..config import get_settings
from ..core.ports import SettingsLike
from .task_registry import TaskRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BackgroundScheduler:
    """Handle to a registry whose event loop runs in a daemon thread."""

    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event
    registry: TaskRegistry

    def stop(self, timeout: float | None = None) -> None:
        """Remove all tasks, then let the loop thread exit. Call join() afterwards."""
        try:
            self.registry.shutdown(timeout=timeout)
        except Exception:
            logger.exception("Registry shutdown failed.")

        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal scheduler loop stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)

    @property
    def is_alive(self) -> bool:
        return self.thread.is_alive()


def start_in_background(settings: SettingsLike | None = None) -> BackgroundScheduler | None:
    """
    Start an event loop in a background thread and bind a fresh TaskRegistry to it.

    Why a thread:
    - synchronous hosts (scripts, services with a blocking main loop) have no event loop,
    - the registry's timers and inline runs need one.

    Returns None if the loop thread did not come up in time.
    """
    if settings is None:
        settings = get_settings()

    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(stop_event.wait())
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()
            logger.info("Scheduler loop thread exited.")

    t = threading.Thread(target=runner, name="taskloop-loop", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Scheduler thread did not initialize properly.")
        return None

    registry = TaskRegistry(settings=settings, loop=loop)
    logger.info("Scheduler background thread started.")
    return BackgroundScheduler(thread=t, loop=loop, stop_event=stop_event, registry=registry)
