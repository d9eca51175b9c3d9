"""Deterministic fake clock for testing.

Satisfies ClockPort (PEP 544 structural subtyping) with a manually
controllable time value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

_EPOCH = datetime(2026, 1, 1, tzinfo=UTC)


@dataclass
class FakeClock:
    """Test double for ClockPort.

    Example::

        clock = FakeClock()
        first = clock.now()
        clock.advance(1.5)
        assert clock.now() - first == timedelta(seconds=1.5)
    """

    current: datetime = field(default=_EPOCH)

    def now(self) -> datetime:
        """Return the manually set time."""
        return self.current

    def advance(self, seconds: float) -> None:
        """Move the clock forward by *seconds*."""
        self.current += timedelta(seconds=seconds)
