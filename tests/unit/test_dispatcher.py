"""
tests/unit/test_dispatcher.py — Fire-and-forget dispatch

Covers:
  - run_action: sync actions, coroutine actions, raising actions are logged
    and never re-raised
  - ThreadDispatcher: one named daemon thread per task, counter, returns
    before the action finishes
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from recurrent.scheduler.dispatcher import ThreadDispatcher, run_action
from recurrent.scheduler.schedule import Rule, Schedule
from recurrent.scheduler.task import Task

SCHEDULE = Schedule(datetime(2026, 1, 1, tzinfo=timezone.utc), Rule.minutely())


def _task(name: str, action) -> Task:
    return Task(name=name, schedule=SCHEDULE, action=action)


# ─────────────────────────────────────────────────────────────────────────────
# run_action
# ─────────────────────────────────────────────────────────────────────────────

class TestRunAction:

    def test_sync_action_runs(self):
        calls = []
        run_action(_task("sync", lambda: calls.append(1)))
        assert calls == [1]

    def test_async_action_is_awaited(self):
        calls = []

        async def job():
            calls.append("awaited")

        run_action(_task("async", job))
        assert calls == ["awaited"]

    def test_raising_action_is_swallowed_at_boundary(self):
        def boom():
            raise RuntimeError("kaboom")

        run_action(_task("boom", boom))  # must not raise

    def test_raising_async_action_is_swallowed(self):
        async def boom():
            raise ValueError("async kaboom")

        run_action(_task("boom", boom))


# ─────────────────────────────────────────────────────────────────────────────
# ThreadDispatcher
# ─────────────────────────────────────────────────────────────────────────────

class TestThreadDispatcher:

    def test_runs_in_named_daemon_thread(self):
        seen: dict[str, object] = {}
        done = threading.Event()

        def action():
            current = threading.current_thread()
            seen["name"] = current.name
            seen["daemon"] = current.daemon
            done.set()

        ThreadDispatcher(thread_name_prefix="test").dispatch(_task("named", action))
        assert done.wait(timeout=2.0)
        assert seen["name"] == "test-named-1"
        assert seen["daemon"] is True

    def test_dispatch_returns_before_action_finishes(self):
        release = threading.Event()
        finished = threading.Event()

        def slow():
            release.wait(timeout=5.0)
            finished.set()

        dispatcher = ThreadDispatcher()
        dispatcher.dispatch(_task("slow", slow))
        assert not finished.is_set()
        assert dispatcher.dispatched == 1
        release.set()
        assert finished.wait(timeout=2.0)

    def test_failing_action_does_not_affect_siblings(self):
        ok = threading.Event()

        def boom():
            raise RuntimeError("kaboom")

        dispatcher = ThreadDispatcher()
        dispatcher.dispatch(_task("boom", boom))
        dispatcher.dispatch(_task("ok", ok.set))
        assert ok.wait(timeout=2.0)
        assert dispatcher.dispatched == 2

    def test_same_task_can_overlap(self):
        inside = threading.Semaphore(0)
        release = threading.Event()

        def action():
            inside.release()
            release.wait(timeout=5.0)

        dispatcher = ThreadDispatcher()
        task = _task("overlap", action)
        dispatcher.dispatch(task)
        dispatcher.dispatch(task)
        assert inside.acquire(timeout=2.0)
        assert inside.acquire(timeout=2.0)
        release.set()
