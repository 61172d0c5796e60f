"""
Clock abstractions for deterministic behavior.

Notes
-----
Engine code must not read wall-clock time directly. The coordinator and review
queue receive a Clock, so tests can pin every timestamp a mutation writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """A source of time."""

    def now(self) -> datetime:
        """Return the current time as a timezone-aware datetime."""
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Clock that returns the current system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class FixedClock:
    """Clock that always returns a fixed time (useful for tests)."""

    fixed_time: datetime

    def now(self) -> datetime:
        if self.fixed_time.tzinfo is None:
            return self.fixed_time.replace(tzinfo=timezone.utc)
        return self.fixed_time


@dataclass(slots=True)
class SteppingClock:
    """Clock that advances by ``step`` on every read."""

    start: datetime
    step: timedelta = field(default=timedelta(seconds=1))
    _ticks: int = 0

    def now(self) -> datetime:
        current = self.start + self.step * self._ticks
        self._ticks += 1
        if current.tzinfo is None:
            return current.replace(tzinfo=timezone.utc)
        return current
