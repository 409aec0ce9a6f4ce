"""
scheduler/loader.py — Build a Scheduler from Settings

Tasks declared in config.yaml reference their action by import path
("package.module:callable"). The reference is resolved with importlib —
the module is imported, never evaluated as text.
"""

from __future__ import annotations

import importlib
from datetime import timedelta
from typing import Any, Callable, Optional

from dateutil.relativedelta import relativedelta

from recurrent.config.settings import Settings, TaskConfig
from recurrent.exceptions import ConfigurationError
from recurrent.observability.logger import get_logger
from recurrent.scheduler.schedule import Frequency
from recurrent.scheduler.scheduler import Scheduler, SchedulerHooks
from recurrent.scheduler.shutdown import ShutdownFlag
from recurrent.scheduler.store import ScheduleStore

log = get_logger(__name__)


def resolve_action(reference: str) -> Callable[[], Any]:
    """Import 'package.module:attr.path' and return the callable it names."""
    module_name, _, attr_path = reference.partition(":")
    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(
            f"Cannot import module '{module_name}' for action '{reference}': {exc}"
        ) from exc
    for part in attr_path.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigurationError(
                f"Action '{reference}': '{part}' not found"
            ) from exc
    if not callable(target):
        raise ConfigurationError(f"Action '{reference}' is not callable")
    return target


def frequency_from_config(cfg: TaskConfig) -> Frequency:
    if cfg.cron is not None:
        return cfg.cron
    every = cfg.every
    if not isinstance(every, dict):
        return every
    months = every.get("months", 0)
    years = every.get("years", 0)
    if months or years:
        # Mixed calendar + fixed units are rejected by rule_from_frequency.
        return relativedelta(
            years=years,
            months=months,
            weeks=every.get("weeks", 0),
            days=every.get("days", 0),
            hours=every.get("hours", 0),
            minutes=every.get("minutes", 0),
            seconds=every.get("seconds", 0),
        )
    return timedelta(
        weeks=every.get("weeks", 0),
        days=every.get("days", 0),
        hours=every.get("hours", 0),
        minutes=every.get("minutes", 0),
        seconds=every.get("seconds", 0),
    )


def register_tasks(scheduler: Scheduler, tasks: list[TaskConfig]) -> None:
    for cfg in tasks:
        scheduler.every(
            cfg.name,
            frequency_from_config(cfg),
            resolve_action(cfg.action),
            start_time=cfg.start_time,
        )


def build_scheduler(
    settings: Settings,
    *,
    hooks: Optional[SchedulerHooks] = None,
    shutdown: Optional[ShutdownFlag] = None,
) -> Scheduler:
    """
    Create a Scheduler from Settings and register every configured task.

    When scheduler.schedule_store_path is set and the caller supplied no
    persistence hooks, a ScheduleStore backs load/save.
    """
    hooks = hooks or SchedulerHooks()
    store_path = settings.scheduler.schedule_store_path
    if store_path and hooks.load_task_schedule is None and hooks.save_task_schedule is None:
        store = ScheduleStore(store_path)
        hooks.load_task_schedule = store.load_task_schedule
        hooks.save_task_schedule = store.save_task_schedule

    scheduler = Scheduler(
        hooks=hooks,
        timezone=settings.scheduler.tzinfo,
        poll_interval=settings.scheduler.poll_interval_seconds,
        shutdown=shutdown,
    )
    register_tasks(scheduler, settings.tasks)
    log.info("scheduler.built", tasks=len(scheduler.tasks), store=store_path)
    return scheduler
