"""
Injectable time source.

Lifecycle timestamps, collateral ``updated_at`` values, settlement
execution times and accrual checkpoints are all taken from a ``Clock``
handed to the owning service, never from ``datetime.now()``.  Accrual
tick arithmetic depends on it: replaying a cycle under a fixed clock must
produce the same checkpoints.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

LEDGER_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests and replays.

    Time only moves through ``advance()`` / ``set_time()``; repeated
    ``now()`` calls return the same instant.

    Args:
        start: Initial instant, timezone-aware.  Defaults to
            ``LEDGER_EPOCH`` (2024-01-01 12:00 UTC).
    """

    def __init__(self, start: datetime | None = None):
        self._current = self._aware(start or LEDGER_EPOCH)

    @staticmethod
    def _aware(value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError(f"DeterministicClock needs an aware datetime, got {value!r}")
        return value.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, value: datetime) -> None:
        self._current = self._aware(value)

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward by ``seconds`` (or a timedelta) and return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self._current += step
        return self._current
