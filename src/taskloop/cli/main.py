# src/taskloop/cli/main.py

"""
CLI entrypoint.

Initializes logging, starts the scheduler loop in a background thread,
registers a heartbeat task and waits for SIGINT/SIGTERM.
"""

from __future__ import annotations

import logging
import signal
import threading
import time

from ..config import get_settings
from ..logging_setup import setup_logging
from ..tasks.task_api import describe
from ..tasks.task_entry import TaskEntry
from ..tasks.task_runner import start_in_background

logger = logging.getLogger(__name__)

_STARTED = time.monotonic()


def _heartbeat(entry: TaskEntry) -> None:
    info = describe(entry)
    logger.info(
        "heartbeat: uptime=%.0fs errors=%s next=%s",
        time.monotonic() - _STARTED,
        info["error_count"],
        info["next_run_at"],
    )


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(log_dir=settings.log_dir, console_level=console_level)

    logger.info("Starting %s (log file: %s)...", settings.app_name, log_file)

    scheduler = start_in_background(settings)
    if scheduler is None:
        logger.error("Scheduler did not start; exiting.")
        return

    scheduler.registry.register(
        "heartbeat",
        _heartbeat,
        interval=settings.heartbeat_seconds,
        run_at_register=True,
    )

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except Exception:
        # Some platforms may not support SIGTERM, etc.
        pass

    logger.info("Running. Press Ctrl+C to stop.")
    try:
        stop_main.wait()
    finally:
        scheduler.stop(timeout=settings.shutdown_timeout_seconds)
        scheduler.join(timeout=10.0)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
