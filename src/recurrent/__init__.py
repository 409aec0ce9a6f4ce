"""
Recurrent — in-process recurring task scheduler.

    from recurrent import Scheduler
    scheduler = Scheduler()
    scheduler.every("cleanup", 300, cleanup)
    scheduler.run()
"""

from recurrent.exceptions import (
    ActionError,
    ConfigurationError,
    RecurrentError,
    ScheduleComputationError,
)
from recurrent.scheduler import (
    CronRule,
    LoopState,
    Rule,
    Schedule,
    Scheduler,
    SchedulerHooks,
    ScheduleStore,
    ShutdownFlag,
    Task,
)

__version__ = "1.0.0"

__all__ = [
    "ActionError",
    "ConfigurationError",
    "CronRule",
    "LoopState",
    "RecurrentError",
    "Rule",
    "Schedule",
    "ScheduleComputationError",
    "ScheduleStore",
    "Scheduler",
    "SchedulerHooks",
    "ShutdownFlag",
    "Task",
    "__version__",
]
