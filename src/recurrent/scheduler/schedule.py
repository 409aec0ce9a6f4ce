"""
scheduler/schedule.py — Recurrence rules and the Schedule capability

The scheduling loop never does calendar maths itself. It only asks a
Schedule two things:

    schedule.next_occurrence(after)   → first occurrence strictly after `after`
    schedule.frequency_in_seconds()   → nominal period, used for start-time
                                        derivation and saved-schedule matching

Behind that interface sit two rule types:

    Rule      — "every N seconds/minutes/…/years", backed by dateutil.rrule
    CronRule  — a 5-field cron expression, backed by croniter

Schedules serialise to YAML so a later process can resume where the last one
stopped (see scheduler/store.py and scheduler/start_time.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from croniter import croniter
from dateutil import rrule as _rrule
from dateutil.relativedelta import relativedelta

from recurrent.exceptions import ConfigurationError, ScheduleComputationError
from recurrent.observability.logger import get_logger

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Units
# ─────────────────────────────────────────────────────────────────────────────

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY
MONTH = 2_629_746      # 1/12 of a Gregorian year
YEAR = 31_556_952      # 365.2425 days

SECONDS_PER: dict[str, int] = {
    "secondly": 1,
    "minutely": MINUTE,
    "hourly": HOUR,
    "daily": DAY,
    "weekly": WEEK,
    "monthly": MONTH,
    "yearly": YEAR,
}

_RRULE_FREQ: dict[str, int] = {
    "secondly": _rrule.SECONDLY,
    "minutely": _rrule.MINUTELY,
    "hourly": _rrule.HOURLY,
    "daily": _rrule.DAILY,
    "weekly": _rrule.WEEKLY,
    "monthly": _rrule.MONTHLY,
    "yearly": _rrule.YEARLY,
}

# Frequencies whose period is a fixed wall-clock length. Only these can be
# fast-forwarded without changing the occurrence set.
_FIXED_STEPS: dict[str, timedelta] = {
    "secondly": timedelta(seconds=1),
    "minutely": timedelta(minutes=1),
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}

_UNIT_NAMES = {
    "secondly": "second",
    "minutely": "minute",
    "hourly": "hour",
    "daily": "day",
    "weekly": "week",
    "monthly": "month",
    "yearly": "year",
}


def _wall_clock(dt: datetime, tz) -> datetime:
    """Express `dt` as a naive wall-clock time in `tz` (or as-is if naive)."""
    if dt.tzinfo is None or tz is None:
        return dt.replace(tzinfo=None)
    return dt.astimezone(tz).replace(tzinfo=None)


# ─────────────────────────────────────────────────────────────────────────────
# Rule
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Rule:
    """
    A "every N <unit>" recurrence.

    frequency   secondly | minutely | hourly | daily | weekly | monthly | yearly
    interval    N (>= 1)
    options     Extra dateutil.rrule filters, e.g. {"byhour": [9, 17]}.
                Values must be ints or lists of ints so they survive YAML.
    """
    frequency: str
    interval: int = 1
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.frequency not in SECONDS_PER:
            raise ConfigurationError(
                f"Unknown rule frequency '{self.frequency}'. "
                f"Valid: {list(SECONDS_PER)}"
            )
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise ConfigurationError(f"Rule interval must be a positive integer, got {self.interval!r}")

    # -- constructors ---------------------------------------------------------

    @classmethod
    def secondly(cls, interval: int = 1, **options: Any) -> "Rule":
        return cls("secondly", interval, options)

    @classmethod
    def minutely(cls, interval: int = 1, **options: Any) -> "Rule":
        return cls("minutely", interval, options)

    @classmethod
    def hourly(cls, interval: int = 1, **options: Any) -> "Rule":
        return cls("hourly", interval, options)

    @classmethod
    def daily(cls, interval: int = 1, **options: Any) -> "Rule":
        return cls("daily", interval, options)

    @classmethod
    def weekly(cls, interval: int = 1, **options: Any) -> "Rule":
        return cls("weekly", interval, options)

    @classmethod
    def monthly(cls, interval: int = 1, **options: Any) -> "Rule":
        return cls("monthly", interval, options)

    @classmethod
    def yearly(cls, interval: int = 1, **options: Any) -> "Rule":
        return cls("yearly", interval, options)

    # -- capability -----------------------------------------------------------

    def frequency_in_seconds(self) -> int:
        return SECONDS_PER[self.frequency] * self.interval

    def next_after(self, start: datetime, after: datetime) -> Optional[datetime]:
        anchor = self._fast_forward(start, after)
        rule = _rrule.rrule(
            _RRULE_FREQ[self.frequency],
            dtstart=anchor,
            interval=self.interval,
            **self.options,
        )
        return rule.after(after, inc=False)

    def _fast_forward(self, start: datetime, after: datetime) -> datetime:
        """
        Move the rrule anchor forward by whole periods so `after()` does not
        walk every occurrence since `start`. Keeps one period of slack.
        """
        step = _FIXED_STEPS.get(self.frequency)
        # `count` is relative to the anchor, so moving the anchor would change it.
        if step is None or "count" in self.options:
            return start
        period = step * self.interval
        naive_start = start.replace(tzinfo=None)
        naive_after = _wall_clock(after, start.tzinfo)
        periods = (naive_after - naive_start) // period - 1
        if periods <= 1:
            return start
        return (naive_start + periods * period).replace(tzinfo=start.tzinfo)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "rrule",
            "frequency": self.frequency,
            "interval": self.interval,
            "options": dict(self.options),
        }

    def __str__(self) -> str:
        unit = _UNIT_NAMES[self.frequency]
        text = f"Every {unit}" if self.interval == 1 else f"Every {self.interval} {unit}s"
        if self.options:
            extras = ", ".join(f"{k}={v}" for k, v in sorted(self.options.items()))
            text = f"{text} ({extras})"
        return text


# ─────────────────────────────────────────────────────────────────────────────
# CronRule
# ─────────────────────────────────────────────────────────────────────────────

# Fixed Monday reference so frequency_in_seconds() is deterministic.
_CRON_REFERENCE = datetime(2001, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CronRule:
    """A 5-field cron expression: minute hour day month weekday."""
    expression: str

    def __post_init__(self) -> None:
        if not isinstance(self.expression, str) or not croniter.is_valid(self.expression):
            raise ConfigurationError(f"Invalid cron expression: '{self.expression}'")

    def frequency_in_seconds(self) -> int:
        """Gap between the first two occurrences after a fixed reference."""
        it = croniter(self.expression, _CRON_REFERENCE)
        first = it.get_next(datetime)
        second = it.get_next(datetime)
        return int((second - first).total_seconds())

    def next_after(self, start: datetime, after: datetime) -> Optional[datetime]:
        # Occurrences never precede the anchor.
        base = after if after >= start else start - timedelta(seconds=1)
        return croniter(self.expression, base).get_next(datetime)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "cron", "expression": self.expression}

    def __str__(self) -> str:
        return f"Cron '{self.expression}'"


RuleLike = Union[Rule, CronRule]


def rule_from_dict(data: dict[str, Any]) -> RuleLike:
    kind = data.get("type", "rrule")
    if kind == "cron":
        return CronRule(data["expression"])
    if kind == "rrule":
        return Rule(
            data["frequency"],
            int(data.get("interval", 1)),
            dict(data.get("options") or {}),
        )
    raise ValueError(f"Unknown rule type '{kind}'")


# ─────────────────────────────────────────────────────────────────────────────
# Frequency → Rule
# ─────────────────────────────────────────────────────────────────────────────

Frequency = Union[int, float, timedelta, relativedelta, Rule, CronRule, str]


def rule_from_frequency(frequency: Frequency) -> tuple[RuleLike, int]:
    """
    Turn a user-supplied frequency into (rule, frequency_in_seconds).

    Plain durations map onto the coarsest unit that divides them exactly:
    604800 → weekly(1), 172800 → daily(2), 5400 → minutely(90), 45 → secondly(45).
    Calendar durations (relativedelta months/years) map onto monthly/yearly.

    Raises:
        ConfigurationError: unsupported type, non-positive or fractional duration.
    """
    if isinstance(frequency, (Rule, CronRule)):
        return frequency, frequency.frequency_in_seconds()

    if isinstance(frequency, str):
        rule = CronRule(frequency.strip())
        return rule, rule.frequency_in_seconds()

    if isinstance(frequency, relativedelta):
        return _rule_from_relativedelta(frequency)

    if isinstance(frequency, timedelta):
        seconds: float = frequency.total_seconds()
    elif isinstance(frequency, (int, float)) and not isinstance(frequency, bool):
        seconds = float(frequency)
    else:
        raise ConfigurationError(
            f"Unsupported frequency {frequency!r} ({type(frequency).__name__}). "
            f"Use seconds, timedelta, relativedelta, Rule, CronRule or a cron string."
        )

    if seconds <= 0:
        raise ConfigurationError(f"Frequency must be positive, got {seconds} seconds")
    if seconds != int(seconds):
        raise ConfigurationError(
            f"Frequency must be a whole number of seconds, got {seconds}"
        )
    whole = int(seconds)

    for name, unit in (("weekly", WEEK), ("daily", DAY), ("hourly", HOUR), ("minutely", MINUTE)):
        if whole % unit == 0:
            rule = Rule(name, whole // unit)
            break
    else:
        rule = Rule("secondly", whole)

    log.debug("schedule.rule_derived", frequency_seconds=whole, rule=str(rule))
    return rule, whole


def _rule_from_relativedelta(delta: relativedelta) -> tuple[Rule, int]:
    fixed = (delta.days, delta.hours, delta.minutes, delta.seconds, delta.microseconds)
    if any(fixed) or delta.weekday is not None:
        raise ConfigurationError(
            "relativedelta frequencies may only set months/years; "
            "use seconds or timedelta for shorter periods"
        )
    months = delta.years * 12 + delta.months
    if months <= 0:
        raise ConfigurationError(f"Frequency must be positive, got {delta!r}")
    if delta.months == 0:
        rule = Rule.yearly(delta.years)
    else:
        rule = Rule.monthly(months)
    return rule, rule.frequency_in_seconds()


# ─────────────────────────────────────────────────────────────────────────────
# Schedule
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Schedule:
    """
    An anchored recurrence: `rule` stepping forward from `start_time`.

    Immutable. `next_occurrence` is a pure function of the rule, the anchor
    and the query time.
    """
    start_time: datetime
    rule: RuleLike

    def next_occurrence(self, after: datetime) -> datetime:
        try:
            result = self.rule.next_after(self.start_time, after)
        except ScheduleComputationError:
            raise
        except Exception as exc:
            raise ScheduleComputationError(
                None, f"{self.rule} failed to compute an occurrence after {after}: {exc}"
            ) from exc
        if result is None:
            raise ScheduleComputationError(
                None, f"{self.rule} has no occurrence after {after.isoformat()}"
            )
        return result

    def frequency_in_seconds(self) -> int:
        return self.rule.frequency_in_seconds()

    def rebased(self, start_time: datetime) -> "Schedule":
        """Same rule, new anchor."""
        return Schedule(start_time=start_time, rule=self.rule)

    # -- serialisation --------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "start_time": self.start_time.isoformat(),
            "rule": self.rule.to_dict(),
        }
        key = getattr(self.start_time.tzinfo, "key", None)
        if key:
            data["timezone"] = key
        return data

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Schedule":
        start = data["start_time"]
        if not isinstance(start, datetime):
            start = datetime.fromisoformat(str(start))
        tz_name = data.get("timezone")
        if tz_name and start.tzinfo is not None:
            try:
                start = start.astimezone(ZoneInfo(tz_name))
            except (ZoneInfoNotFoundError, ValueError):
                log.warning("schedule.unknown_timezone", timezone=tz_name)
        return cls(start_time=start, rule=rule_from_dict(data["rule"]))

    @classmethod
    def from_yaml(cls, text: str) -> "Schedule":
        data = yaml.safe_load(text)
        if not isinstance(data, dict):
            raise ValueError("serialised schedule must be a YAML mapping")
        return cls.from_dict(data)

    def __str__(self) -> str:
        return f"{self.rule} from {self.start_time.isoformat()}"
