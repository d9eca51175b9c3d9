"""Wall-clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock for timestamping event log
entries and channel updates.

Unlike a monotonic timer these timestamps are shown to people, so the
port returns timezone-aware UTC datetimes.  :meth:`LogEntry.format
<togglesync._events.LogEntry.format>` renders them in local time.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Source of the current time.

    The default implementation wraps ``datetime.now(UTC)``.  Tests
    inject a deterministic fake clock for reproducible timestamps.
    """

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Production clock wrapping ``datetime.now(UTC)``.

    Satisfies :class:`ClockPort` via structural subtyping.
    """

    def now(self) -> datetime:
        """Return the current UTC time."""
        return datetime.now(UTC)
