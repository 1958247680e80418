# tests/conftest.py

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from types import SimpleNamespace

import pytest

from taskloop.tasks.task_registry import TaskRegistry

from .fakes import FakeClock, RecordingSink


@pytest.fixture()
def settings() -> SimpleNamespace:
    """
    Minimal settings object compatible with TaskRegistry.

    We intentionally use a SimpleNamespace rather than the env-driven Settings,
    to keep unit tests isolated and fast (short busy retry).
    """
    return SimpleNamespace(
        busy_retry_seconds=0.02,
        shutdown_timeout_seconds=1.0,
        daemon_threads=True,
    )


@pytest.fixture()
def clock() -> FakeClock:
    # A Monday, 13:00 local time.
    return FakeClock(datetime(2026, 3, 2, 13, 0, 0))


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def registry(settings: SimpleNamespace, sink: RecordingSink) -> Iterator[TaskRegistry]:
    """
    Registry with a real clock and a recording sink.

    The event loop is picked up on first register(), i.e. inside the async test.
    """
    reg = TaskRegistry(settings=settings, sinks=[sink])
    yield reg
    reg.shutdown()


@pytest.fixture()
def clocked_registry(
    settings: SimpleNamespace, sink: RecordingSink, clock: FakeClock
) -> Iterator[TaskRegistry]:
    """Registry whose timestamps come from the fake clock."""
    reg = TaskRegistry(settings=settings, sinks=[sink], clock=clock)
    yield reg
    reg.shutdown()
