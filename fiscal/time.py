"""
Fiscal Time - Injectable Clock
==============================
Lifecycle timestamps and retry due-times are read from a Clock so that
tests can drive the retry scheduler deterministically.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now_utc(self) -> datetime:
        ...  # pragma: no cover


class SystemClock:
    """Production clock - real system time."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """
    Test clock - returns a fixed timestamp until advanced.

    Usage:
        clock = FixedClock(datetime(2026, 3, 2, tzinfo=timezone.utc))
        clock.advance(30)
    """

    def __init__(self, fixed_dt: datetime) -> None:
        if fixed_dt.tzinfo is None:
            raise ValueError("FixedClock requires timezone-aware datetime.")
        self._fixed_dt = fixed_dt
        self._lock = threading.Lock()

    def now_utc(self) -> datetime:
        with self._lock:
            return self._fixed_dt

    def advance(self, seconds: float) -> datetime:
        with self._lock:
            self._fixed_dt = self._fixed_dt + timedelta(seconds=seconds)
            return self._fixed_dt
