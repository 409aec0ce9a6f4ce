"""
scheduler/scheduler.py — Recurrent Scheduler

Holds the task registry and runs the wait/dispatch loop in the calling
thread until shutdown is requested.

Design
------
* Registration is a single-threaded setup phase. Once run() starts the
  registry is read-only; register() refuses new tasks.
* Each cycle finds the earliest next occurrence across all tasks, collects
  every task due at exactly that instant, waits for it with short bounded
  waits on the ShutdownFlag, then dispatches the whole due set.
* Shutdown is checked before the due set is computed and again after the
  wait. A stop request that arrives mid-wait suppresses the pending dispatch.
* Dispatch is fire-and-forget (scheduler/dispatcher.py). An action failure
  never reaches the loop; a schedule failure ends it.
* Saved schedules are written by a single background worker, in dispatch
  order, so a slow save hook never delays the next cycle. run() drains
  pending saves before it returns.

Usage::

    scheduler = Scheduler(timezone="UTC")

    @scheduler.every("heartbeat", 30)
    def heartbeat():
        ...

    scheduler.every("report", timedelta(days=1), send_report)
    scheduler.run()   # blocks until SIGINT / SIGTERM / SIGQUIT
"""

from __future__ import annotations

import os
import socket
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, tzinfo
from enum import Enum
from typing import Any, Callable, Optional, Protocol
from zoneinfo import ZoneInfo

from recurrent.exceptions import ConfigurationError
from recurrent.observability.logger import get_logger
from recurrent.scheduler.dispatcher import ThreadDispatcher
from recurrent.scheduler.schedule import Frequency, Schedule, rule_from_frequency
from recurrent.scheduler.shutdown import (
    ShutdownFlag,
    install_signal_handlers,
    restore_signal_handlers,
)
from recurrent.scheduler.start_time import derive_start_time
from recurrent.scheduler.task import Task

log = get_logger(__name__)

Action = Callable[[], Any]


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Dispatcher(Protocol):
    def dispatch(self, task: Task) -> None: ...


@dataclass
class SchedulerHooks:
    """
    Optional collaborators.

    logger              Receives every scheduler message, prefixed with the
                        scheduler identifier.
    load_task_schedule  name → serialised schedule (YAML) or None. Called once
                        per task at registration.
    save_task_schedule  (name, serialised schedule) → None. Called after each
                        dispatch of that task, on one background worker
                        thread, in dispatch order.
    """
    logger: Optional[Callable[[str], None]] = None
    load_task_schedule: Optional[Callable[[str], Any]] = None
    save_task_schedule: Optional[Callable[[str, str], None]] = None


def _identifier() -> str:
    try:
        return f"host:{socket.gethostname()} pid:{os.getpid()}"
    except OSError:
        return f"pid:{os.getpid()}"


class Scheduler:
    """
    In-process recurring-task scheduler.

    Lifecycle::

        scheduler = Scheduler(hooks=SchedulerHooks(logger=print))
        scheduler.every("cleanup", 300, cleanup)
        scheduler.run()           # IDLE → RUNNING → STOPPING → STOPPED

    Introspection::

        scheduler.tasks                 # registry, in registration order
        scheduler.state                 # LoopState
        scheduler.next_task_time()      # earliest due time or None
    """

    def __init__(
        self,
        *,
        hooks: Optional[SchedulerHooks] = None,
        timezone: str | tzinfo = "UTC",
        poll_interval: float = 0.5,
        clock: Optional[Callable[[], datetime]] = None,
        dispatcher: Optional[Dispatcher] = None,
        shutdown: Optional[ShutdownFlag] = None,
    ) -> None:
        """
        Args:
            hooks:          Logger and persistence callbacks (all optional).
            timezone:       IANA name or tzinfo for the default clock and for
                            naive start times.
            poll_interval:  Upper bound (seconds) on each wait, and therefore on
                            how long a stop request can go unnoticed.
            clock:          Returns the current time as an aware datetime.
            dispatcher:     Starts actions; defaults to one thread per action.
            shutdown:       Flag shared with signal handlers or other threads.
        """
        if poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        self.hooks = hooks or SchedulerHooks()
        self.tz: tzinfo = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self.poll_interval = float(poll_interval)
        self._clock = clock or (lambda: datetime.now(self.tz))
        self.dispatcher: Dispatcher = dispatcher or ThreadDispatcher()
        self.shutdown = shutdown or ShutdownFlag()
        self.tasks: list[Task] = []
        self.identifier = _identifier()
        self.state = LoopState.IDLE
        self.cycles = 0
        self._saver: Optional[ThreadPoolExecutor] = None

    # ── Logging ───────────────────────────────────────────────────────────────

    def log_message(self, message: str) -> str:
        return f"[Recurrent Scheduler: {self.identifier}] - {message}"

    def log(self, message: str) -> None:
        """Send a scheduler message to structlog and the logger hook, if any."""
        log.debug("scheduler.message", message=message)
        if self.hooks.logger is None:
            return
        try:
            self.hooks.logger(self.log_message(message))
        except Exception as exc:
            log.warning("scheduler.logger_hook_failed", error=str(exc))

    def now(self) -> datetime:
        return self._clock()

    # ── Registration ──────────────────────────────────────────────────────────

    def every(
        self,
        key: str,
        frequency: Frequency,
        action: Optional[Action] = None,
        *,
        start_time: Optional[datetime] = None,
    ) -> Any:
        """
        Register `action` to run every `frequency`.

        frequency   seconds (int/float), timedelta, relativedelta (months/years),
                    Rule, CronRule, or a cron expression string.
        start_time  Explicit anchor. Omit to derive one (saved schedule, else a
                    frequency-appropriate clock boundary).

        Without `action`, returns a decorator::

            @scheduler.every("ping", 10)
            def ping(): ...

        Returns the registered Task (or the decorated function).
        """
        if action is None:
            def decorator(fn: Action) -> Action:
                self.every(key, frequency, fn, start_time=start_time)
                return fn
            return decorator

        self._check_registration(key, action)
        self.log(f"Adding Task: {key}")
        schedule = self.create_schedule(key, frequency, start_time)
        return self.register(key, schedule, action)

    def create_schedule(
        self,
        name: str,
        frequency: Frequency,
        start_time: Optional[datetime] = None,
    ) -> Schedule:
        self.log(f"Creating schedule for: {name}")
        rule, frequency_in_seconds = rule_from_frequency(frequency)
        self.log(f"Rule created: {rule}")
        if start_time is None:
            start_time = derive_start_time(
                name,
                frequency_in_seconds,
                now=self.now(),
                load_task_schedule=self.hooks.load_task_schedule,
                on_message=self.log,
            )
        elif start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=self.tz)
        self.log(f"Schedule created for {name}")
        return Schedule(start_time=start_time, rule=rule)

    def register(self, name: str, schedule: Any, action: Action) -> Task:
        """Append a Task to the registry. Raises ConfigurationError on bad input."""
        self._check_registration(name, action)
        if schedule is None or not (
            callable(getattr(schedule, "next_occurrence", None))
            and callable(getattr(schedule, "frequency_in_seconds", None))
        ):
            raise ConfigurationError(
                f"Task '{name}' needs a schedule with next_occurrence() and "
                f"frequency_in_seconds(), got {schedule!r}"
            )
        task = Task(name=name, schedule=schedule, action=action)
        self.tasks.append(task)
        log.info(
            "scheduler.task_added",
            task=name,
            schedule=str(schedule),
            frequency_seconds=schedule.frequency_in_seconds(),
        )
        return task

    def _check_registration(self, name: Any, action: Any) -> None:
        if self.state is not LoopState.IDLE:
            raise ConfigurationError(
                f"Cannot register task '{name}' once the scheduler has started"
            )
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"Task name must be a non-empty string, got {name!r}")
        if not callable(action):
            raise ConfigurationError(f"Action for task '{name}' is not callable: {action!r}")
        if any(t.name == name for t in self.tasks):
            raise ConfigurationError(
                f"A task named '{name}' is already registered. Task names must be "
                f"unique because saved schedules are looked up by name."
            )

    # ── Due-time computation ──────────────────────────────────────────────────

    def next_task_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """Earliest next occurrence across all tasks, or None with no tasks."""
        if now is None:
            now = self.now()
        times = [task.next_occurrence(now) for task in self.tasks]
        return min(times) if times else None

    def tasks_at_time(self, time: datetime, now: Optional[datetime] = None) -> list[Task]:
        """Tasks whose next occurrence is exactly `time`, in registry order."""
        if now is None:
            now = self.now()
        return [task for task in self.tasks if task.next_occurrence(now) == time]

    # ── Loop ──────────────────────────────────────────────────────────────────

    def stop(self, reason: str = "stop() called") -> None:
        self.shutdown.request(reason)

    def run(self, *, install_signals: bool = True) -> None:
        """
        Run the scheduling loop in the calling thread until shutdown.

        install_signals routes SIGINT/SIGTERM/SIGQUIT to the shutdown flag;
        it requires the main thread. Any ScheduleComputationError ends the
        loop and propagates.
        """
        if self.state is not LoopState.IDLE:
            raise ConfigurationError(f"Scheduler cannot run from state '{self.state.value}'")

        previous = install_signal_handlers(self.shutdown) if install_signals else {}
        self.log("Starting Recurrent")
        log.info(
            "scheduler.starting",
            identifier=self.identifier,
            tasks=len(self.tasks),
            poll_interval=self.poll_interval,
        )
        self.state = LoopState.RUNNING
        if self.hooks.save_task_schedule is not None:
            self._saver = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recurrent-save")
        try:
            self._loop()
        except Exception as exc:
            log.error("scheduler.loop_failed", error=f"{type(exc).__name__}: {exc}")
            raise
        finally:
            if self._saver is not None:
                self._saver.shutdown(wait=True)
                self._saver = None
            restore_signal_handlers(previous)
            self.state = LoopState.STOPPED
            log.info("scheduler.stopped", cycles=self.cycles)

    def _loop(self) -> None:
        if not self.tasks:
            log.warning("scheduler.no_tasks", detail="waiting for shutdown only")

        while not self.shutdown.is_set():
            now = self.now()
            execute_at = self.next_task_time(now)
            if execute_at is None:
                self.shutdown.wait(self.poll_interval)
                continue

            due = self.tasks_at_time(execute_at, now)
            self._wait_until(execute_at)

            if self.shutdown.is_set():
                break

            self._dispatch(due, execute_at)
            self.cycles += 1

        self.state = LoopState.STOPPING
        self.log("Exiting...")
        log.info("scheduler.stopping", reason=self.shutdown.reason)

    def _wait_until(self, execute_at: datetime) -> None:
        while not self.shutdown.is_set():
            remaining = (execute_at - self.now()).total_seconds()
            if remaining <= 0:
                return
            self.shutdown.wait(min(self.poll_interval, remaining))

    def _dispatch(self, due: list[Task], execute_at: datetime) -> None:
        log.info(
            "scheduler.dispatching",
            due_at=execute_at.isoformat(),
            tasks=[t.name for t in due],
        )
        for task in due:
            self.dispatcher.dispatch(task)
        if self._saver is None:
            return
        for task in due:
            self._saver.submit(self._save_schedule, task, execute_at)

    def _save_schedule(self, task: Task, occurrence: datetime) -> None:
        save = self.hooks.save_task_schedule
        if save is None:
            return
        schedule = task.schedule
        if not isinstance(schedule, Schedule):
            log.debug("scheduler.save_skipped", task=task.name, reason="not serialisable")
            return
        try:
            save(task.name, schedule.rebased(occurrence).to_yaml())
        except Exception as exc:
            log.error(
                "scheduler.save_failed",
                task=task.name,
                error=f"{type(exc).__name__}: {exc}",
            )

    # ── Introspection ─────────────────────────────────────────────────────────

    def describe(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """One row per task: name, schedule, frequency and next occurrence."""
        if now is None:
            now = self.now()
        return [
            {
                "name": task.name,
                "schedule": str(task.schedule),
                "frequency_seconds": task.frequency_in_seconds(),
                "next_occurrence": task.next_occurrence(now),
            }
            for task in self.tasks
        ]
