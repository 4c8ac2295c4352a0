"""
Clock sources for the login guard.

Stores may be shared between processes (Redis, Postgres), so timestamps are
wall-clock epoch seconds. Consumers clamp derived durations at zero so clock
adjustments never produce negative values.
"""

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        ...


class SystemClock:
    """Wall clock in epoch seconds."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, value: float) -> None:
        with self._lock:
            self._now = float(value)
