"""
scheduler/task.py — Task entity

A Task couples a name, a Schedule and a zero-argument action. Tasks are
created once at registration and never mutated or removed afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from recurrent.exceptions import ScheduleComputationError


@dataclass(frozen=True)
class Task:
    """
    name      Label used in logs and as the saved-schedule key.
    schedule  Anything exposing next_occurrence(after) and frequency_in_seconds().
    action    Zero-argument callable (sync or async) run on each occurrence.
    """
    name: str
    schedule: Any
    action: Callable[[], Any] = field(repr=False)

    def next_occurrence(self, now: datetime) -> datetime:
        """
        First occurrence strictly after `now`.

        Any failure of the recurrence engine surfaces as
        ScheduleComputationError carrying this task's name.
        """
        try:
            return self.schedule.next_occurrence(now)
        except ScheduleComputationError as exc:
            if exc.task is None:
                raise ScheduleComputationError(self.name, str(exc)) from exc
            raise
        except Exception as exc:
            raise ScheduleComputationError(
                self.name,
                f"Schedule for task '{self.name}' failed: {type(exc).__name__}: {exc}",
            ) from exc

    def frequency_in_seconds(self) -> float:
        return self.schedule.frequency_in_seconds()
