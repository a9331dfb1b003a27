"""
Clock -- injectable source of "now" for the ledger and its read models.

Movements default their ``occurred_at`` to the clock, and every analytics
window ("the last N days") is anchored on it, so a fixed clock makes the
whole read side reproducible in tests.

Architecture position:
    Kernel > Domain.  SystemClock is the only place the kernel reads the
    wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2025, 1, 8, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """
    Time source injected into services and selectors.

    Guarantees:
        - ``now_utc()`` is timezone-aware and in UTC.
    """

    @abstractmethod
    def now_utc(self) -> datetime:
        ...

    def days_ago(self, days: int, hours: int = 0) -> datetime:
        """Start of a lookback window of ``days`` (plus ``hours``) ending now."""
        return self.now_utc() - timedelta(days=days, hours=hours)


class SystemClock(Clock):
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at a fixed instant (2025-01-08 12:00 UTC by default).

    Only ``advance()`` moves it.  Naive instants are taken as UTC.
    """

    def __init__(self, fixed_time: datetime | None = None):
        fixed_time = fixed_time or DEFAULT_TEST_TIME
        if fixed_time.tzinfo is None:
            fixed_time = fixed_time.replace(tzinfo=timezone.utc)
        self._current = fixed_time.astimezone(timezone.utc)

    def now_utc(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1, *, days: int = 0) -> datetime:
        """Move forward and return the new instant."""
        self._current += timedelta(days=days, seconds=seconds)
        return self._current
