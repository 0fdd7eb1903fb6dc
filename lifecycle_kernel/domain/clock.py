"""
Injectable time source.

Stage durations, lateness, overdue units and the recent-transition window are
all measured against "now".  Services take a Clock instead of calling
``datetime.now()`` so a test can pin the floor to a known instant and step it
forward stage by stage.

SystemClock is the only place wall-clock time enters the kernel.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

FLOOR_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class Clock(ABC):
    """Source of timezone-aware instants."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(UTC)


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at ``FLOOR_EPOCH`` unless given another aware instant.  Repeated
    ``now()`` calls return the same value until ``advance()``,
    ``advance_minutes()``, ``tick()`` or ``set_time()`` moves it.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = self._aware(fixed_time or FLOOR_EPOCH)

    @staticmethod
    def _aware(instant: datetime) -> datetime:
        if instant.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        return instant

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = self._aware(time)

    def advance(self, seconds: int = 1) -> None:
        self._current = self._current + timedelta(seconds=seconds)

    def advance_minutes(self, minutes: int) -> None:
        self.advance(minutes * 60)

    def tick(self) -> datetime:
        """Step one second forward and return the new instant."""
        self.advance(1)
        return self._current
