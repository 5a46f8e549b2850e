"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock so that the ledger, the threshold evaluator,
    the rule engine and the escalation scheduler never call ``datetime.now()``
    directly.  Cooldowns, schedule windows, expiry windows and escalation
    delays are all measured against an injected Clock.

Failure modes:
    None.  ``as_utc`` treats naive datetimes as UTC, which is how SQLite
    hands back values written from an aware clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time receive a Clock instance via
        constructor injection.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def now_utc(self) -> datetime:
        """Get the current time as aware UTC."""
        return as_utc(self.now())


class SystemClock(Clock):
    """Production clock that returns actual system time (aware UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()``
    or ``set_time()`` is called.  Safe to share across threads: reads and
    writes of the offset are single attribute assignments.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta(0)

    def now(self) -> datetime:
        return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._offset = timedelta(0)

    def advance(self, seconds: float = 0, *, minutes: float = 0, days: float = 0) -> datetime:
        """Advance the clock and return the new time."""
        self._offset += timedelta(seconds=seconds, minutes=minutes, days=days)
        return self.now()
