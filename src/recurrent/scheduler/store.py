"""
scheduler/store.py — YAML file store for saved schedules

Implements the two persistence hooks the scheduler consumes:

    load_task_schedule(name) -> str | None     (at registration)
    save_task_schedule(name, yaml_text)        (after each dispatch)

The file is one YAML mapping of task name → serialised schedule, so it can be
read and edited by hand:

    cleanup:
      start_time: '2026-10-18T10:05:00+00:00'
      rule: {type: rrule, frequency: minutely, interval: 5, options: {}}
      timezone: UTC

Thread-safety:
  - a single lock serialises reads and writes within the process
  - writes go to a temp file that is then renamed over the original
"""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional

import yaml

from recurrent.observability.logger import get_logger

log = get_logger(__name__)


class ScheduleStore:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        log.info("schedule_store.ready", path=str(self._path), entries=len(self._read()))

    @property
    def path(self) -> Path:
        return self._path

    # ---- low-level helpers ----

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            log.warning("schedule_store.unreadable", path=str(self._path), error=str(exc))
            return {}
        if not isinstance(data, dict):
            log.warning("schedule_store.not_a_mapping", path=str(self._path))
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        fd, tmp = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    # ---- hooks ----

    def load_task_schedule(self, name: str) -> Optional[str]:
        with self._lock:
            entry = self._read().get(name)
        if entry is None:
            return None
        return yaml.safe_dump(entry, sort_keys=False)

    def save_task_schedule(self, name: str, serialized: str) -> None:
        entry = yaml.safe_load(serialized)
        if not isinstance(entry, dict):
            raise ValueError(f"serialised schedule for '{name}' must be a YAML mapping")
        with self._lock:
            data = self._read()
            data[name] = entry
            self._write(data)
        log.debug("schedule_store.saved", task=name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._read())
