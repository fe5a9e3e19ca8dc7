"""
Clock -- injectable time source.

Services and the broadcaster never call ``datetime.now()`` directly; they
receive a Clock.  Tests use DeterministicClock so movement timestamps and
event payloads are reproducible.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock returning actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value until ``advance()``, ``tick()`` or
    ``set_time()`` is called.  With ``auto_tick`` every call to ``now()``
    advances by one second first, which gives each movement a distinct
    created_at.
    """

    def __init__(self, fixed_time: datetime | None = None, auto_tick: bool = False):
        self._fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._advance_seconds = 0
        self._auto_tick = auto_tick

    def now(self) -> datetime:
        if self._auto_tick:
            self._advance_seconds += 1
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        self._advance_seconds += seconds

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self._fixed_time + timedelta(seconds=self._advance_seconds)
