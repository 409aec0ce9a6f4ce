"""
exceptions.py — Recurrent Unified Error Hierarchy

All Recurrent-specific exceptions live here. Every layer raises typed
subclasses of RecurrentError, never bare Exception.

Import from here, not from individual modules:
    from recurrent.exceptions import ConfigurationError, ScheduleComputationError

Hierarchy:
    RecurrentError
    ├── ConfigurationError
    │   └── ConfigError            (raised by Settings.validate_all())
    ├── ScheduleComputationError
    └── ActionError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class RecurrentError(Exception):
    """Base class for all Recurrent exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Setup phase
# ─────────────────────────────────────────────────────────────────────────────

class ConfigurationError(RecurrentError):
    """Bad registration or config input. Raised before the loop starts."""


# ─────────────────────────────────────────────────────────────────────────────
# Loop phase
# ─────────────────────────────────────────────────────────────────────────────

class ScheduleComputationError(RecurrentError):
    """The recurrence engine could not produce a next occurrence."""

    def __init__(self, task: Optional[str], message: str = "") -> None:
        self.task = task
        super().__init__(
            message or f"Could not compute the next occurrence for task '{task}'."
        )


class ActionError(RecurrentError):
    """
    A task action failed inside its own dispatch thread.

    Never propagated to the loop; only built so the failure can be logged
    with the task name attached.
    """

    def __init__(self, task: str, cause: BaseException) -> None:
        self.task = task
        self.cause = cause
        super().__init__(f"Action for task '{task}' failed: {type(cause).__name__}: {cause}")


__all__ = [
    "RecurrentError",
    "ConfigurationError",
    "ScheduleComputationError",
    "ActionError",
]
