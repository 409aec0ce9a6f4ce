"""
scheduler/dispatcher.py — Fire-and-forget action dispatch

Every due task gets its own daemon thread. The loop keeps no handle, never
joins, and never sees an action's result or exception:

  * a raising action is caught at the thread boundary and logged
    (scheduler.task.error) and cannot reach the loop or sibling tasks
  * a blocking action only blocks its own thread
  * coroutine-function actions run under asyncio.run() inside their thread

There is no pool and no limit. A burst of N simultaneously-due tasks starts
N threads; that ceiling is accepted in exchange for zero backpressure into
the loop.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import threading
import time
from typing import Any

from recurrent.exceptions import ActionError
from recurrent.observability.logger import bind_task, clear_task, get_logger
from recurrent.scheduler.task import Task

log = get_logger(__name__)


def run_action(task: Task) -> None:
    """Run one invocation of `task.action` behind a catch-and-log boundary."""
    bind_task(task.name)
    started = time.monotonic()
    log.debug("scheduler.task.start", task=task.name)
    try:
        result: Any = task.action()
        if inspect.isawaitable(result):
            asyncio.run(_await(result))
    except Exception as exc:
        err = ActionError(task.name, exc)
        log.error(
            "scheduler.task.error",
            task=task.name,
            error=str(err),
            duration_s=round(time.monotonic() - started, 3),
            exc_info=True,
        )
    else:
        log.debug(
            "scheduler.task.finished",
            task=task.name,
            duration_s=round(time.monotonic() - started, 3),
        )
    finally:
        clear_task()


async def _await(awaitable: Any) -> Any:
    return await awaitable


class ThreadDispatcher:
    """Starts one untracked daemon thread per dispatched task."""

    def __init__(self, thread_name_prefix: str = "recurrent") -> None:
        self._prefix = thread_name_prefix
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self._dispatched = 0

    def dispatch(self, task: Task) -> None:
        seq = next(self._counter)
        thread = threading.Thread(
            target=run_action,
            args=(task,),
            name=f"{self._prefix}-{task.name}-{seq}",
            daemon=True,
        )
        thread.start()
        with self._lock:
            self._dispatched += 1
        log.debug("scheduler.dispatch", task=task.name, thread=thread.name)

    @property
    def dispatched(self) -> int:
        """Number of actions started so far."""
        with self._lock:
            return self._dispatched
