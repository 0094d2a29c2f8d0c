"""
Time source abstraction.

Everything that reads the time (candle alignment, signal deadlines,
daily risk reset, position ids) takes a Clock so tests can move time
without sleeping. The daily reset boundary is the UTC calendar day.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Current time as epoch seconds."""
        ...

    def today(self) -> str:
        """Current UTC calendar day as an ISO date string."""
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> float:
        return time.time()

    def today(self) -> str:
        return datetime.fromtimestamp(self.now(), tz=timezone.utc).date().isoformat()


class FixedClock:
    """Manually advanced clock for tests and replays."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def today(self) -> str:
        return datetime.fromtimestamp(self._now, tz=timezone.utc).date().isoformat()

    def set(self, timestamp: float) -> None:
        self._now = timestamp

    def advance(self, seconds: float) -> None:
        self._now += seconds
