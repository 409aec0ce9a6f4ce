"""
scheduler/shutdown.py — Shutdown coordination

A ShutdownFlag is the only channel between signal delivery and the
scheduling loop. It wraps threading.Event so the loop can observe it from a
bounded wait without being parked in any particular call.

Usage::

    flag = ShutdownFlag()
    previous = install_signal_handlers(flag)   # SIGINT, SIGTERM, SIGQUIT
    ...
    scheduler.run()                            # returns once flag is set
    restore_signal_handlers(previous)
"""

from __future__ import annotations

import signal
import threading
from typing import Any, Iterable, Optional

from recurrent.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_SIGNAL_NAMES: tuple[str, ...] = ("SIGINT", "SIGTERM", "SIGQUIT")


class ShutdownFlag:
    """Process-wide stop request. Starts clear; set at most once."""

    def __init__(self) -> None:
        self._event = threading.Event()
        # Reentrant: signal handlers run on the main thread and may interrupt
        # a request() that is already holding the lock there.
        self._lock = threading.RLock()
        self.reason: Optional[str] = None

    def request(self, reason: str = "requested") -> bool:
        """
        Set the flag. Returns True on the first call, False afterwards;
        repeated requests have no further effect.
        """
        with self._lock:
            if self._event.is_set():
                return False
            if self.reason is None:
                self.reason = reason
            self._event.set()
        log.info("shutdown.requested", reason=reason)
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to `timeout` seconds; returns True if the flag is set."""
        return self._event.wait(timeout)

    def __bool__(self) -> bool:
        return self.is_set()


def _resolve_signals(names: Iterable[str]) -> list[signal.Signals]:
    resolved = []
    for name in names:
        sig = getattr(signal, name, None)
        if sig is None:
            log.debug("shutdown.signal_unavailable", signal=name)
            continue
        resolved.append(sig)
    return resolved


def install_signal_handlers(
    flag: ShutdownFlag,
    signal_names: Iterable[str] = DEFAULT_SIGNAL_NAMES,
) -> dict[signal.Signals, Any]:
    """
    Route termination signals to `flag.request()`.

    Must be called from the main thread (a CPython restriction). Signals the
    platform lacks (SIGQUIT on Windows) are skipped. Returns the previous
    handlers keyed by signal.
    """
    previous: dict[signal.Signals, Any] = {}

    def _handle(signum: int, frame: Any) -> None:
        flag.request(reason=signal.Signals(signum).name)

    for sig in _resolve_signals(signal_names):
        try:
            previous[sig] = signal.signal(sig, _handle)
        except (OSError, RuntimeError, ValueError) as exc:
            log.warning("shutdown.signal_install_failed", signal=sig.name, error=str(exc))
    log.debug("shutdown.handlers_installed", signals=[s.name for s in previous])
    return previous


def restore_signal_handlers(previous: dict[signal.Signals, Any]) -> None:
    for sig, handler in previous.items():
        try:
            signal.signal(sig, handler)
        except (OSError, RuntimeError, ValueError) as exc:
            log.warning("shutdown.signal_restore_failed", signal=sig.name, error=str(exc))
