"""
config/settings.py — Recurrent Runtime Settings

Merges config.yaml (scheduler options + task table) with environment
variables. Pydantic-powered: all fields are validated and typed.

  - SchedulerConfig rejects unknown timezones and silly poll intervals
  - TaskConfig requires exactly one of `every` / `cron` and a
    "package.module:callable" action reference
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a clear, human-readable message listing every problem
  - load_settings() respects RECURRENT_CONFIG env var as a fallback when no
    explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from recurrent.exceptions import ConfigurationError


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(ConfigurationError):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_EVERY_UNITS = {"seconds", "minutes", "hours", "days", "weeks", "months", "years"}


def _is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerConfig(BaseModel):
    timezone: str = "UTC"
    poll_interval_seconds: float = 0.5
    schedule_store_path: Optional[str] = None
    install_signal_handlers: bool = True

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("scheduler.timezone must not be empty. Use 'UTC' or a tz name.")
        if not _is_valid_timezone(v):
            raise ValueError(f"scheduler.timezone '{v}' is not a known IANA timezone")
        return v

    @field_validator("poll_interval_seconds")
    @classmethod
    def _sane_poll_interval(cls, v: float) -> float:
        if not (0.0 < v <= 5.0):
            raise ValueError("scheduler.poll_interval_seconds must be > 0 and <= 5")
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class TaskConfig(BaseModel):
    """
    One task entry from the `tasks:` table of config.yaml.

    Example::

        tasks:
          - name: cleanup
            every: {minutes: 5}
            action: myapp.jobs:cleanup
          - name: report
            cron: "0 7 * * 1-5"
            action: myapp.jobs:send_report
    """
    name: str
    action: str
    every: Optional[Union[float, dict[str, int]]] = None
    cron: Optional[str] = None
    start_time: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def _non_empty_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("tasks[].name must not be empty")
        return v.strip()

    @field_validator("action")
    @classmethod
    def _action_reference(cls, v: str) -> str:
        module, sep, attr = v.partition(":")
        if not sep or not module.strip() or not attr.strip():
            raise ValueError(
                f"tasks[].action '{v}' must look like 'package.module:callable'"
            )
        return v

    @field_validator("every")
    @classmethod
    def _valid_every(cls, v: Any) -> Any:
        if v is None:
            return v
        if isinstance(v, dict):
            unknown = set(v) - _EVERY_UNITS
            if unknown:
                raise ValueError(
                    f"tasks[].every has unknown units {sorted(unknown)}. "
                    f"Valid units: {sorted(_EVERY_UNITS)}"
                )
            if not v or any(n < 0 for n in v.values()) or not any(v.values()):
                raise ValueError("tasks[].every must contain at least one positive amount")
        elif v <= 0:
            raise ValueError("tasks[].every must be a positive number of seconds")
        return v

    @model_validator(mode="after")
    def _exactly_one_frequency(self) -> "TaskConfig":
        if (self.every is None) == (self.cron is None):
            raise ValueError(
                f"task '{self.name}' must set exactly one of 'every' or 'cron'"
            )
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Recurrent runtime settings.

    Priority (highest to lowest):
      1. config.yaml sections (passed in by load_settings())
      2. Environment variables (RECURRENT_SCHEDULER__TIMEZONE=Europe/Berlin)
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="RECURRENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tasks: List[TaskConfig] = Field(default_factory=list)

    @field_validator("scheduler", mode="before")
    @classmethod
    def _coerce_scheduler(cls, v: Any) -> Any:
        return SchedulerConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Optional[Path]:
        return Path(self.logging.log_dir) if self.logging.log_dir else None

    @property
    def log_json_format(self) -> Optional[bool]:
        return self.logging.json_format

    @property
    def log_console_output(self) -> bool:
        return self.logging.console_output

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems Pydantic can't see, such as two
        tasks sharing a name (persisted schedules are keyed by name).
        """
        errors: list[str] = []

        # ── Task names are unique ────────────────────────────────────────────
        counts = Counter(t.name for t in self.tasks)
        for name, n in counts.items():
            if n > 1:
                errors.append(
                    f"task name '{name}' is used {n} times. Task names must be "
                    f"unique because saved schedules are looked up by name."
                )

        # ── Schedule store path is not a directory ───────────────────────────
        store = self.scheduler.schedule_store_path
        if store and Path(store).expanduser().is_dir():
            errors.append(
                f"scheduler.schedule_store_path '{store}' is a directory. "
                f"Point it at a YAML file, e.g. './data/schedules.yaml'."
            )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nRecurrent startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your environment "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"scheduler", "logging", "tasks"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. RECURRENT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("RECURRENT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)
    if not isinstance(yaml_data, dict):
        raise ValueError(f"{resolved_path} must contain a YAML mapping at the top level")

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config path
    on first use. Thread-safe.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = Settings(
                **{
                    k: v
                    for k, v in _load_yaml(_resolve_config_path(None)).items()
                    if k in _KNOWN_SECTIONS
                }
            )
    return _singleton
