"""
Clock -- Injectable time abstraction.

Responsibility:
    Services, fetchers and the scheduler receive a Clock through their
    constructors instead of calling ``datetime.now()`` directly, so that the
    since-date window, ingestion-log timestamps and generated received-at
    values are reproducible in tests.

Failure modes:
    None.  ``DeterministicClock`` never advances on its own.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone, tzinfo


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns the current instant.
        - ``now_utc()`` returns the same instant normalized to UTC.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    @abstractmethod
    def now_utc(self) -> datetime:
        """Get the current UTC time."""
        ...

    def now_in(self, tz: tzinfo) -> datetime:
        """Current time expressed in ``tz``.

        Naive clock values (used by SQLite-backed tests) are returned as-is.
        """
        current = self.now()
        if current.tzinfo is None:
            return current
        return current.astimezone(tz)


class SystemClock(Clock):
    """Production clock returning actual system time (timezone-aware UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()`` or
    ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2025, 12, 11, 9, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def now_utc(self) -> datetime:
        current = self.now()
        if current.tzinfo is None:
            return current
        return current.astimezone(timezone.utc)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()
