# tests/test_task_runner.py

from __future__ import annotations

import threading
from types import SimpleNamespace

from taskloop.tasks.task_runner import start_in_background

from .fakes import RecordingSink, wait_for_sync


def test_background_scheduler_runs_tasks_registered_from_main_thread(settings: SimpleNamespace) -> None:
    scheduler = start_in_background(settings)
    assert scheduler is not None

    sink = RecordingSink()
    scheduler.registry.add_log_sink(sink)

    main_thread = threading.get_ident()
    ran_on: list[int] = []
    ticked = threading.Event()

    def tick() -> None:
        ran_on.append(threading.get_ident())
        if len(ran_on) >= 2:
            ticked.set()

    try:
        entry = scheduler.registry.register("bg", tick, interval=0.02)
        assert ticked.wait(timeout=2.0)
        assert main_thread not in ran_on
        # Inline runs happen on the scheduler's loop thread.
        assert set(ran_on) == {scheduler.thread.ident}

        scheduler.registry.pause("bg")
        assert wait_for_sync(lambda: sink.count("disabled") >= 1)
    finally:
        scheduler.stop(timeout=1.0)
        scheduler.join(timeout=2.0)

    assert not scheduler.is_alive
    assert entry.removed
    assert len(scheduler.registry) == 0


def test_background_scheduler_isolated_task(settings: SimpleNamespace) -> None:
    scheduler = start_in_background(settings)
    assert scheduler is not None

    done = threading.Event()

    try:
        scheduler.registry.register("iso", lambda: done.set(), run_isolated=True)
        assert done.wait(timeout=2.0)
    finally:
        scheduler.stop(timeout=1.0)
        scheduler.join(timeout=2.0)

    assert not scheduler.is_alive
