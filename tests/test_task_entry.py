# tests/test_task_entry.py

from __future__ import annotations

import asyncio
import threading
import time
from datetime import timedelta

import pytest

from taskloop.tasks.task_entry import TaskEntry
from taskloop.tasks.task_models import LogLevel, RunState
from taskloop.tasks.task_registry import TaskRegistry

from .fakes import FakeClock, RecordingSink, wait_for


@pytest.mark.asyncio
async def test_interval_task_runs_after_interval_then_repeats(registry: TaskRegistry) -> None:
    stamps: list[float] = []
    started = time.monotonic()

    registry.register("tick", lambda: stamps.append(time.monotonic()), interval=0.05, run_at_register=False)
    assert stamps == []

    assert await wait_for(lambda: len(stamps) >= 2)
    assert stamps[0] - started >= 0.045
    assert stamps[1] - stamps[0] >= 0.045


@pytest.mark.asyncio
async def test_action_receives_entry_when_it_takes_an_argument(registry: TaskRegistry) -> None:
    seen: list[TaskEntry] = []
    entry = registry.register("arg", lambda e: seen.append(e))
    assert seen == [entry]


@pytest.mark.asyncio
async def test_positive_verify_postpones_exactly(
    clocked_registry: TaskRegistry, clock: FakeClock, sink: RecordingSink
) -> None:
    calls: list[int] = []
    checks: list[TaskEntry] = []

    def verify(entry: TaskEntry) -> timedelta:
        checks.append(entry)
        return timedelta(seconds=10)

    entry = clocked_registry.register("v", lambda: calls.append(1), interval=60, verify_at_runtime=verify)

    assert calls == []
    assert checks == [entry]
    assert entry.state == RunState.POSTPONED
    assert entry.last_attempted_run == clock.now
    assert entry.last_run_started is None
    assert entry.next_run_at == clock.now + timedelta(seconds=10)
    assert sink.count("postponed") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("result", [0, 0.0, None, timedelta(0), timedelta(seconds=-3), -1])
async def test_non_positive_verify_runs_immediately(registry: TaskRegistry, result) -> None:
    calls: list[int] = []
    entry = registry.register("v", lambda: calls.append(1), verify_at_runtime=lambda e: result)

    assert calls == [1]
    assert entry.state == RunState.COMPLETED


@pytest.mark.asyncio
async def test_verify_is_called_again_on_next_tick(registry: TaskRegistry) -> None:
    calls: list[int] = []
    answers = [0.03, 0]

    def verify(entry: TaskEntry) -> float:
        return answers.pop(0) if answers else 0

    registry.register("again", lambda: calls.append(1), verify_at_runtime=verify)

    assert calls == []
    assert await wait_for(lambda: calls == [1])
    assert answers == []


@pytest.mark.asyncio
async def test_failing_verify_skips_run_and_reschedules_normally(
    clocked_registry: TaskRegistry, clock: FakeClock, sink: RecordingSink
) -> None:
    calls: list[int] = []
    boom = RuntimeError("check failed")

    def verify(entry: TaskEntry) -> float:
        raise boom

    entry = clocked_registry.register("vf", lambda: calls.append(1), interval=30, verify_at_runtime=verify)

    assert calls == []
    assert entry.errors == [boom]
    assert entry.state == RunState.FAILED
    assert entry.next_run_at == clock.now + timedelta(seconds=30)
    assert [e.error for e in sink.events if e.level == LogLevel.EXCEPTION] == [boom]


@pytest.mark.asyncio
async def test_failing_action_is_recorded_and_rescheduled(
    clocked_registry: TaskRegistry, clock: FakeClock, sink: RecordingSink
) -> None:
    boom = ValueError("boom")

    def fail() -> None:
        raise boom

    entry = clocked_registry.register("fail", fail, interval=10)

    assert entry.errors == [boom]
    assert entry.last_error is boom
    assert entry.state == RunState.FAILED
    assert entry.is_running is False
    assert entry.last_run_ended == clock.now
    # Rescheduled exactly as if it had succeeded.
    assert entry.next_run_at == clock.now + timedelta(seconds=10)

    exc_events = [e for e in sink.events if e.level == LogLevel.EXCEPTION]
    assert len(exc_events) == 1
    assert exc_events[0].error is boom


@pytest.mark.asyncio
async def test_failing_action_keeps_ticking(registry: TaskRegistry) -> None:
    attempts: list[int] = []

    def fail() -> None:
        attempts.append(1)
        raise RuntimeError("again")

    entry = registry.register("fail", fail, interval=0.02)

    assert await wait_for(lambda: len(attempts) >= 3)
    assert len(entry.errors) >= 3


@pytest.mark.asyncio
async def test_paused_entry_keeps_ticking_without_running(registry: TaskRegistry, sink: RecordingSink) -> None:
    calls: list[int] = []
    entry = registry.register("paused", lambda: calls.append(1), interval=0.03, run_at_register=False)

    registry.pause("paused")
    assert await wait_for(lambda: sink.count("disabled") >= 2)

    assert calls == []
    assert entry.state == RunState.SKIPPED
    assert entry.next_run_at is not None
    assert all(
        e.level == LogLevel.WARNING for e in sink.events if "disabled" in e.message
    )

    registry.resume("paused")
    assert await wait_for(lambda: len(calls) >= 1)


@pytest.mark.asyncio
async def test_isolated_runs_on_own_thread_and_reschedules(registry: TaskRegistry) -> None:
    loop_thread = threading.get_ident()
    threads: list[int] = []

    entry = registry.register(
        "iso",
        lambda: threads.append(threading.get_ident()),
        interval=0.03,
        run_isolated=True,
    )

    assert await wait_for(lambda: len(threads) >= 2)
    assert loop_thread not in threads
    assert entry.last_run_started is not None
    assert await wait_for(lambda: entry.last_run_ended is not None)


@pytest.mark.asyncio
async def test_isolated_busy_entry_is_not_run_twice_and_stays_scheduled(
    registry: TaskRegistry, sink: RecordingSink
) -> None:
    release = threading.Event()
    running = threading.Event()
    active: list[int] = []
    peak: list[int] = []

    def slow() -> None:
        active.append(1)
        peak.append(len(active))
        running.set()
        release.wait(timeout=5.0)
        active.pop()

    entry = registry.register("busy", slow, run_isolated=True)
    assert await wait_for(running.is_set)

    registry.run("busy")

    assert entry.is_busy
    assert sink.count("still in progress") == 1
    # Not dormant: a re-check is armed.
    assert entry.next_run_at is not None
    assert await wait_for(lambda: sink.count("still in progress") >= 2)

    release.set()
    assert await wait_for(lambda: not entry.is_busy)
    assert max(peak) == 1


@pytest.mark.asyncio
async def test_stop_asks_isolated_run_to_wind_down(registry: TaskRegistry) -> None:
    steps: list[int] = []

    def cooperative(entry: TaskEntry) -> None:
        while not entry.cancelled:
            steps.append(1)
            entry.cancel_event.wait(0.01)

    entry = registry.register("coop", cooperative, interval=0.01, run_isolated=True)
    assert await wait_for(lambda: len(steps) >= 2)

    registry.stop("coop")

    assert await wait_for(lambda: not entry.is_busy)
    await asyncio.sleep(0.05)
    assert entry.next_run_at is None
    assert entry.is_dormant
    assert entry.state == RunState.COMPLETED


@pytest.mark.asyncio
async def test_inline_coroutine_action_is_awaited(registry: TaskRegistry) -> None:
    done: list[TaskEntry] = []

    async def work(entry: TaskEntry) -> None:
        await asyncio.sleep(0.01)
        done.append(entry)

    entry = registry.register("coro", work, interval=60)

    assert entry.is_running
    assert await wait_for(lambda: entry.state == RunState.COMPLETED)
    assert done == [entry]
    assert entry.next_run_at is not None


@pytest.mark.asyncio
async def test_stop_cancels_inline_coroutine(registry: TaskRegistry, sink: RecordingSink) -> None:
    started = asyncio.Event()

    async def forever() -> None:
        started.set()
        await asyncio.sleep(10)

    entry = registry.register("forever", forever, interval=60)
    await asyncio.wait_for(started.wait(), timeout=2.0)

    registry.stop("forever")

    assert await wait_for(lambda: entry.state == RunState.CANCELLED)
    assert entry.is_running is False
    assert entry.next_run_at is None
    assert sink.count("Run cancelled") == 1


@pytest.mark.asyncio
async def test_isolated_coroutine_action_runs_in_thread(registry: TaskRegistry) -> None:
    loop_thread = threading.get_ident()
    seen: list[int] = []

    async def work() -> None:
        await asyncio.sleep(0)
        seen.append(threading.get_ident())

    entry = registry.register("iso-coro", work, run_isolated=True)

    assert await wait_for(lambda: entry.state == RunState.COMPLETED)
    assert len(seen) == 1
    assert seen[0] != loop_thread


@pytest.mark.asyncio
async def test_manual_run_replaces_armed_timer(clocked_registry: TaskRegistry, clock: FakeClock) -> None:
    calls: list[int] = []
    entry = clocked_registry.register("m", lambda: calls.append(1), interval=60, run_at_register=False)
    first = entry.next_run_at

    clock.advance(seconds=5)
    clocked_registry.run("m")

    assert calls == [1]
    assert entry.next_run_at == first + timedelta(seconds=5)


@pytest.mark.asyncio
async def test_sync_action_triggering_itself_takes_busy_branch(
    clocked_registry: TaskRegistry, clock: FakeClock, sink: RecordingSink
) -> None:
    calls: list[int] = []

    def reentrant() -> None:
        calls.append(1)
        clocked_registry.run("re")

    entry = clocked_registry.register("re", reentrant, interval=60)

    assert calls == [1]
    assert sink.count("still in progress") == 1
    assert entry.state == RunState.COMPLETED
    # The busy retry was replaced by the regular interval once the run ended.
    assert entry.next_run_at == clock.now + timedelta(seconds=60)


@pytest.mark.asyncio
async def test_manual_run_during_inline_coroutine_takes_busy_branch(
    clocked_registry: TaskRegistry, clock: FakeClock, sink: RecordingSink
) -> None:
    calls: list[int] = []
    release = asyncio.Event()

    async def slow() -> None:
        calls.append(1)
        await release.wait()

    entry = clocked_registry.register("slow", slow, interval=60)
    assert await wait_for(lambda: calls == [1])

    clocked_registry.run("slow")

    assert sink.count("still in progress") == 1
    assert entry.is_running

    release.set()
    assert await wait_for(lambda: entry.state == RunState.COMPLETED)

    assert calls == [1]
    assert entry.next_run_at == clock.now + timedelta(seconds=60)


@pytest.mark.asyncio
async def test_coroutine_stopping_its_own_entry_completes(
    registry: TaskRegistry, sink: RecordingSink
) -> None:
    done: list[int] = []

    async def self_stop(entry: TaskEntry) -> None:
        registry.stop(entry.name)
        await asyncio.sleep(0)
        done.append(1)

    entry = registry.register("self-stop", self_stop, interval=60)

    assert await wait_for(lambda: done == [1])
    await asyncio.sleep(0.02)

    assert entry.state == RunState.COMPLETED
    assert entry.is_running is False
    assert entry.next_run_at is None
    assert sink.count("Run cancelled") == 0


@pytest.mark.asyncio
async def test_keyword_only_actions_are_called_without_the_entry(registry: TaskRegistry) -> None:
    seen: list[object] = []

    def kw_only(*, tag: str = "kw") -> None:
        seen.append(tag)

    def kw_any(**kwargs: object) -> None:
        seen.append(kwargs)

    def var_positional(*args: object) -> None:
        seen.append(args)

    a = registry.register("kw-only", kw_only)
    b = registry.register("kw-any", kw_any)
    c = registry.register("var-pos", var_positional)

    assert seen == ["kw", {}, (c,)]
    assert a.errors == [] and b.errors == [] and c.errors == []
