"""
Injectable time source.

Operation handlers never read the wall clock themselves; the ledger
service captures `now` from a Clock when it builds an operation, so a
retried operation keeps the timestamp of its first attempt.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now_utc(self) -> datetime:
        """Return current UTC time."""
        ...


class SystemClock:
    """Real system time."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Test clock that returns a fixed timestamp until advanced.

    Example:
        >>> clock = FixedClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        >>> clock.advance(days=31)
    """

    def __init__(self, fixed_dt: datetime) -> None:
        if fixed_dt.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._fixed_dt = fixed_dt

    def now_utc(self) -> datetime:
        return self._fixed_dt

    def advance(self, **delta: float) -> None:
        """Move the clock forward by a timedelta (days=, seconds=, ...)."""
        self._fixed_dt = self._fixed_dt + timedelta(**delta)
