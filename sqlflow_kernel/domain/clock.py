"""
Clock -- Injectable time source.

Responsibility:
    Lets services, selectors and the scheduler obtain "now" without calling
    ``datetime.now()`` directly, so that step operate times, schedule
    checks and retention cut-offs are deterministic under test.

Architecture position:
    Kernel > Domain -- pure, zero I/O (except SystemClock).
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Every service that stamps or compares times receives a Clock via
        constructor injection.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock returning timezone-aware UTC wall time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value until ``advance()`` or
          ``set_time()`` is called.
        - The tzinfo of the starting time is preserved.  Stored times load
          back as aware UTC, so services want an aware starting time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta()

    def now(self) -> datetime:
        return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._offset = timedelta()

    def advance(
        self,
        seconds: float | None = None,
        *,
        minutes: float = 0,
        hours: float = 0,
        days: float = 0,
    ) -> datetime:
        """Advance the clock and return the new time. With no arguments, one second."""
        if seconds is None:
            seconds = 0 if (minutes or hours or days) else 1
        self._offset += timedelta(seconds=seconds, minutes=minutes, hours=hours, days=days)
        return self.now()
