"""
tests/unit/test_config.py — Settings loading and validation

Covers:
  - Defaults load cleanly with no config file
  - Unknown timezone and out-of-range poll interval are rejected
  - Invalid log level is rejected, lower-case level is normalised
  - TaskConfig: exactly one of every / cron, action reference shape,
    every-mapping units and amounts
  - validate_all() raises ConfigError with a numbered list
  - validate_all() catches duplicate task names and a directory store path
  - Nested env vars (RECURRENT_SCHEDULER__TIMEZONE) are applied
  - RECURRENT_CONFIG env var is respected by load_settings()
  - Explicit config_path argument takes priority over env var
  - A non-mapping YAML document is rejected
"""

from __future__ import annotations

import textwrap

import pytest
from pydantic import ValidationError


# ── Helpers ───────────────────────────────────────────────────────────────────

def _make_settings(**overrides):
    """Build a Settings object from keyword overrides (no YAML file needed)."""
    from recurrent.config.settings import Settings
    return Settings(**overrides)


def _make_scheduler_cfg(**kwargs):
    from recurrent.config.settings import SchedulerConfig
    return SchedulerConfig(**kwargs)


def _make_task_cfg(**kwargs):
    from recurrent.config.settings import TaskConfig
    kwargs.setdefault("name", "cleanup")
    kwargs.setdefault("action", "myapp.jobs:cleanup")
    return TaskConfig(**kwargs)


def _make_logging_cfg(**kwargs):
    from recurrent.config.settings import LoggingConfig
    return LoggingConfig(**kwargs)


def _write_config(path, body: str):
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


# ── SchedulerConfig ───────────────────────────────────────────────────────────

class TestSchedulerConfig:
    def test_defaults(self):
        cfg = _make_scheduler_cfg()
        assert cfg.timezone == "UTC"
        assert cfg.poll_interval_seconds == 0.5
        assert cfg.schedule_store_path is None
        assert cfg.install_signal_handlers is True

    def test_known_timezone(self):
        cfg = _make_scheduler_cfg(timezone="Europe/Berlin")
        assert cfg.tzinfo.key == "Europe/Berlin"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError, match="IANA"):
            _make_scheduler_cfg(timezone="Mars/Olympus_Mons")

    def test_empty_timezone_rejected(self):
        with pytest.raises(ValidationError):
            _make_scheduler_cfg(timezone="  ")

    @pytest.mark.parametrize("poll", [0, -1, 5.5])
    def test_poll_interval_out_of_range(self, poll):
        with pytest.raises(ValidationError):
            _make_scheduler_cfg(poll_interval_seconds=poll)

    def test_poll_interval_upper_bound_inclusive(self):
        assert _make_scheduler_cfg(poll_interval_seconds=5).poll_interval_seconds == 5


# ── TaskConfig ────────────────────────────────────────────────────────────────

class TestTaskConfig:
    def test_every_seconds(self):
        cfg = _make_task_cfg(every=30)
        assert cfg.every == 30
        assert cfg.cron is None

    def test_every_mapping(self):
        cfg = _make_task_cfg(every={"minutes": 15})
        assert cfg.every == {"minutes": 15}

    def test_cron(self):
        cfg = _make_task_cfg(cron="0 7 * * 1-5")
        assert cfg.cron == "0 7 * * 1-5"

    def test_both_every_and_cron_rejected(self):
        with pytest.raises(ValidationError, match="exactly one"):
            _make_task_cfg(every=60, cron="* * * * *")

    def test_neither_every_nor_cron_rejected(self):
        with pytest.raises(ValidationError, match="exactly one"):
            _make_task_cfg()

    @pytest.mark.parametrize("every", [0, -30, {}, {"minutes": 0}, {"fortnights": 1}])
    def test_bad_every_rejected(self, every):
        with pytest.raises(ValidationError):
            _make_task_cfg(every=every)

    @pytest.mark.parametrize("action", ["cleanup", "myapp.jobs:", ":cleanup"])
    def test_bad_action_reference_rejected(self, action):
        with pytest.raises(ValidationError, match="package.module:callable"):
            _make_task_cfg(every=60, action=action)

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            _make_task_cfg(name="   ", every=60)

    def test_start_time_parsed(self):
        cfg = _make_task_cfg(every=60, start_time="2026-01-01T06:00:00+00:00")
        assert cfg.start_time.hour == 6
        assert cfg.start_time.tzinfo is not None


# ── LoggingConfig ─────────────────────────────────────────────────────────────

class TestLoggingConfig:
    def test_invalid_level_rejected(self):
        with pytest.raises(ValidationError):
            _make_logging_cfg(level="LOUD")

    def test_level_normalised(self):
        assert _make_logging_cfg(level="debug").level == "DEBUG"

    def test_log_dir_can_be_disabled(self):
        settings = _make_settings(logging={"log_dir": None})
        assert settings.log_dir is None


# ── validate_all() ────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_defaults_pass(self):
        _make_settings().validate_all()

    def test_duplicate_task_names(self):
        from recurrent.config.settings import ConfigError
        settings = _make_settings(
            tasks=[
                {"name": "cleanup", "every": 60, "action": "a.b:c"},
                {"name": "cleanup", "every": 120, "action": "a.b:d"},
            ]
        )
        with pytest.raises(ConfigError) as exc_info:
            settings.validate_all()
        message = str(exc_info.value)
        assert "1." in message
        assert "'cleanup' is used 2 times" in message

    def test_store_path_is_directory(self, tmp_path):
        from recurrent.config.settings import ConfigError
        settings = _make_settings(scheduler={"schedule_store_path": str(tmp_path)})
        with pytest.raises(ConfigError, match="is a directory"):
            settings.validate_all()

    def test_all_problems_reported_together(self, tmp_path):
        from recurrent.config.settings import ConfigError
        settings = _make_settings(
            scheduler={"schedule_store_path": str(tmp_path)},
            tasks=[
                {"name": "x", "every": 60, "action": "a.b:c"},
                {"name": "x", "every": 60, "action": "a.b:c"},
            ],
        )
        with pytest.raises(ConfigError) as exc_info:
            settings.validate_all()
        assert "2 configuration problem(s)" in str(exc_info.value)

    def test_config_error_is_configuration_error(self):
        from recurrent.config.settings import ConfigError
        from recurrent.exceptions import ConfigurationError
        assert issubclass(ConfigError, ConfigurationError)


# ── Environment ───────────────────────────────────────────────────────────────

class TestEnvironment:
    def test_nested_env_var(self, monkeypatch):
        monkeypatch.setenv("RECURRENT_SCHEDULER__TIMEZONE", "Asia/Tokyo")
        settings = _make_settings()
        assert settings.scheduler.timezone == "Asia/Tokyo"


# ── load_settings() ───────────────────────────────────────────────────────────

class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        from recurrent.config.settings import load_settings
        settings = load_settings(tmp_path / "nope.yaml")
        assert settings.tasks == []

    def test_loads_tasks(self, tmp_path):
        from recurrent.config.settings import load_settings
        path = _write_config(tmp_path / "config.yaml", """
            scheduler:
              timezone: Europe/Berlin
            tasks:
              - name: heartbeat
                every: 30
                action: myapp.jobs:heartbeat
              - name: report
                cron: "0 7 * * 1-5"
                action: myapp.reports:send
            unrelated_section:
              ignored: true
        """)
        settings = load_settings(path)
        assert settings.scheduler.timezone == "Europe/Berlin"
        assert [t.name for t in settings.tasks] == ["heartbeat", "report"]
        assert settings.tasks[1].cron == "0 7 * * 1-5"

    def test_env_var_config_path(self, tmp_path, monkeypatch):
        from recurrent.config.settings import load_settings
        path = _write_config(tmp_path / "from_env.yaml", """
            logging:
              level: WARNING
        """)
        monkeypatch.setenv("RECURRENT_CONFIG", str(path))
        assert load_settings().log_level == "WARNING"

    def test_explicit_path_beats_env_var(self, tmp_path, monkeypatch):
        from recurrent.config.settings import load_settings
        env_path = _write_config(tmp_path / "env.yaml", "logging:\n  level: WARNING\n")
        explicit = _write_config(tmp_path / "explicit.yaml", "logging:\n  level: ERROR\n")
        monkeypatch.setenv("RECURRENT_CONFIG", str(env_path))
        assert load_settings(explicit).log_level == "ERROR"

    def test_non_mapping_rejected(self, tmp_path):
        from recurrent.config.settings import load_settings
        path = _write_config(tmp_path / "config.yaml", "- just\n- a list\n")
        with pytest.raises(ValueError):
            load_settings(path)

    def test_get_settings_is_singleton(self, tmp_path, monkeypatch):
        from recurrent.config.settings import get_settings, load_settings
        path = _write_config(tmp_path / "config.yaml", "logging:\n  level: DEBUG\n")
        loaded = load_settings(path)
        assert get_settings() is loaded
        assert get_settings() is get_settings()
