"""Tests for the bounded-concurrency job scheduler."""

import threading
import time

import pytest

from partscan.processing.errors import ConfigurationError
from partscan.processing.scheduler import JobScheduler


@pytest.mark.parametrize("value", [0, -1, 1.5, "2"])
def test_invalid_concurrency_rejected(value):
    """Test that construction fails fast for non-positive or non-integer limits."""
    with pytest.raises(ConfigurationError):
        JobScheduler(value)


def test_default_concurrency_is_one():
    with JobScheduler() as scheduler:
        assert scheduler.max_concurrency == 1


def test_never_exceeds_max_concurrency():
    """Test that 5 tasks with a limit of 2 never overlap by more than 2."""
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}
    calls = []

    def make_task(index):
        def task():
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.05)
            with lock:
                state["active"] -= 1
                calls.append(index)
            return index

        return task

    with JobScheduler(2) as scheduler:
        futures = [scheduler.submit(make_task(i)) for i in range(5)]
        results = [f.result(timeout=5) for f in futures]

    assert results == [0, 1, 2, 3, 4]
    assert sorted(calls) == [0, 1, 2, 3, 4]
    assert state["peak"] <= 2


def test_waiting_tasks_start_in_submission_order():
    """Test FIFO order among queued tasks when only one slot exists."""
    started = []
    gate = threading.Event()

    def blocker():
        gate.wait(timeout=5)
        started.append("blocker")

    def make_task(name):
        return lambda: started.append(name)

    with JobScheduler(1) as scheduler:
        first = scheduler.submit(blocker)
        others = [scheduler.submit(make_task(f"task-{i}")) for i in range(4)]
        assert scheduler.pending >= 1
        gate.set()
        first.result(timeout=5)
        for future in others:
            future.result(timeout=5)

    assert started == ["blocker", "task-0", "task-1", "task-2", "task-3"]


def test_failed_task_releases_slot():
    """Test that a failing task reports through its future and frees the slot."""

    def boom():
        raise RuntimeError("backend exploded")

    with JobScheduler(1) as scheduler:
        failed = scheduler.submit(boom)
        after = scheduler.submit(lambda: "ok")

        with pytest.raises(RuntimeError, match="backend exploded"):
            failed.result(timeout=5)
        assert after.result(timeout=5) == "ok"
        assert scheduler.running == 0
        assert scheduler.pending == 0
