"""
scheduler/start_time.py — First-occurrence anchor for new tasks

Two strategies, tried in order:

1. Resume from a saved schedule. If a load hook is configured and returns a
   schedule for the task name whose frequency matches the requested one, the
   anchor is that schedule's next occurrence. A restarted process therefore
   keeps the exact cadence of the process it replaces.

2. Round "now" down to the coarsest boundary not exceeding the frequency,
   never finer than a minute:

       frequency <  1 hour    → start of current minute
       frequency <  1 day     → start of current hour
       frequency <  1 week    → start of current day
       frequency <  1 month   → start of current week (Monday 00:00)
       frequency <  1 year    → start of current month
       otherwise              → start of current year

   Occurrences then land on natural clock ticks (top of the hour, midnight…)
   instead of drifting with process start-up jitter.

   In-between periods only get the boundary one step finer than the period:
   a 15-minute task anchors at the current minute (:37, :52, :07…) rather
   than the top of the hour, and a 6-hour task at the current hour rather
   than midnight. Pass an explicit start_time, or a Rule/cron expression,
   for tasks that must sit on a coarser grid.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import yaml

from recurrent.exceptions import RecurrentError
from recurrent.observability.logger import get_logger
from recurrent.scheduler.schedule import DAY, HOUR, MONTH, WEEK, YEAR, Schedule

log = get_logger(__name__)

LoadTaskSchedule = Callable[[str], Any]
MessageFn = Callable[[str], None]


def _noop(message: str) -> None:
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Boundaries
# ─────────────────────────────────────────────────────────────────────────────

def beginning_of_minute(now: datetime) -> datetime:
    return now.replace(second=0, microsecond=0)


def beginning_of_hour(now: datetime) -> datetime:
    return now.replace(minute=0, second=0, microsecond=0)


def beginning_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def beginning_of_week(now: datetime) -> datetime:
    return beginning_of_day(now - timedelta(days=now.weekday()))


def beginning_of_month(now: datetime) -> datetime:
    return beginning_of_day(now).replace(day=1)


def beginning_of_year(now: datetime) -> datetime:
    return beginning_of_day(now).replace(month=1, day=1)


def derive_start_time_from_frequency(
    frequency: float,
    *,
    now: datetime,
    on_message: MessageFn = _noop,
) -> datetime:
    on_message("Deriving start time from frequency")
    if frequency < HOUR:
        on_message("Setting start time to beginning of current minute")
        return beginning_of_minute(now)
    if frequency < DAY:
        on_message("Setting start time to beginning of current hour")
        return beginning_of_hour(now)
    if frequency < WEEK:
        on_message("Setting start time to beginning of current day")
        return beginning_of_day(now)
    if frequency < MONTH:
        on_message("Setting start time to beginning of current week")
        return beginning_of_week(now)
    if frequency < YEAR:
        on_message("Setting start time to beginning of current month")
        return beginning_of_month(now)
    # No coarser boundary exists; yearly and longer share the year boundary.
    on_message("Setting start time to beginning of current year")
    return beginning_of_year(now)


# ─────────────────────────────────────────────────────────────────────────────
# Saved schedules
# ─────────────────────────────────────────────────────────────────────────────

def _coerce_saved(saved: Any) -> Schedule:
    if isinstance(saved, Schedule):
        return saved
    if isinstance(saved, dict):
        return Schedule.from_dict(saved)
    if isinstance(saved, (str, bytes)):
        text = saved.decode("utf-8") if isinstance(saved, bytes) else saved
        return Schedule.from_yaml(text)
    raise TypeError(f"unsupported saved schedule type {type(saved).__name__}")


def derive_start_time_from_saved_schedule(
    name: str,
    frequency: float,
    *,
    now: datetime,
    load_task_schedule: LoadTaskSchedule,
    on_message: MessageFn = _noop,
) -> datetime:
    try:
        saved = load_task_schedule(name)
        if not saved:
            return derive_start_time_from_frequency(frequency, now=now, on_message=on_message)

        on_message(f"Saved schedule found for {name}")
        saved_schedule = _coerce_saved(saved)
        saved_frequency = saved_schedule.frequency_in_seconds()
        if saved_frequency != frequency:
            on_message("Schedule frequency does not match saved schedule frequency")
            return derive_start_time_from_frequency(frequency, now=now, on_message=on_message)
        resumed = saved_schedule.next_occurrence(now)
    except (yaml.YAMLError, OSError, KeyError, TypeError, ValueError, RecurrentError) as exc:
        log.warning(
            "start_time.saved_schedule_unusable",
            task=name,
            error=f"{type(exc).__name__}: {exc}",
        )
        on_message(f"Saved schedule for {name} could not be used, ignoring it")
        return derive_start_time_from_frequency(frequency, now=now, on_message=on_message)

    on_message(
        "Saved schedule frequency matches, setting start time to saved "
        f"schedules next occurrence: {resumed.isoformat()}"
    )
    return resumed


def derive_start_time(
    name: str,
    frequency: float,
    *,
    now: datetime,
    load_task_schedule: Optional[LoadTaskSchedule] = None,
    on_message: MessageFn = _noop,
) -> datetime:
    """
    Anchor for the first occurrence of task `name` with the given frequency
    (seconds). `now` is the scheduler's reference clock reading.
    """
    on_message("No start time provided, deriving one.")
    if load_task_schedule is not None:
        on_message("Attempting to derive from saved schedule")
        return derive_start_time_from_saved_schedule(
            name,
            frequency,
            now=now,
            load_task_schedule=load_task_schedule,
            on_message=on_message,
        )
    return derive_start_time_from_frequency(frequency, now=now, on_message=on_message)
