"""config/ — Runtime settings (config.yaml + environment)."""

from recurrent.config.settings import (
    ConfigError,
    LoggingConfig,
    SchedulerConfig,
    Settings,
    TaskConfig,
    get_settings,
    load_settings,
)

__all__ = [
    "ConfigError",
    "LoggingConfig",
    "SchedulerConfig",
    "Settings",
    "TaskConfig",
    "get_settings",
    "load_settings",
]
