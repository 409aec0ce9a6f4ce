"""
scheduler/ — Recurring-task scheduling engine

    from recurrent.scheduler import Scheduler, Rule
    scheduler = Scheduler()
    scheduler.every("cleanup", 300, cleanup)
    scheduler.run()
"""

from recurrent.scheduler.dispatcher import ThreadDispatcher
from recurrent.scheduler.schedule import CronRule, Rule, Schedule, rule_from_frequency
from recurrent.scheduler.scheduler import LoopState, Scheduler, SchedulerHooks
from recurrent.scheduler.shutdown import ShutdownFlag, install_signal_handlers
from recurrent.scheduler.start_time import derive_start_time
from recurrent.scheduler.store import ScheduleStore
from recurrent.scheduler.task import Task

__all__ = [
    "CronRule",
    "LoopState",
    "Rule",
    "Schedule",
    "ScheduleStore",
    "Scheduler",
    "SchedulerHooks",
    "ShutdownFlag",
    "Task",
    "ThreadDispatcher",
    "derive_start_time",
    "install_signal_handlers",
    "rule_from_frequency",
]
