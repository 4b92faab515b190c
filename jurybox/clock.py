"""Injectable time sources.

The orchestrator, discussion driver and message log never read the wall
clock directly; they receive a Clock so tests can pin timestamps.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


class Clock:
    """Wall-clock time source."""

    def now(self) -> datetime:
        """Current timezone-aware UTC timestamp."""
        return datetime.now(UTC)


class SystemClock(Clock):
    """Clock backed by the real system time."""


class ManualClock(Clock):
    """Clock that only moves when told to.

    Every call to now() returns the same instant until advance() is
    called, which makes message timestamps and round durations
    reproducible in tests.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move the clock forward by the given number of seconds."""
        self._now += timedelta(seconds=seconds)
