"""Append-only event log for diagnostics.

Records every inbound message, outbound publish and connection
transition as a timestamped :class:`LogEntry`.  This is the log a
user reads in the UI; it is separate from the Python ``logging``
records written for operators.

Retention:

- ``capacity=None`` — unbounded, entries are never dropped.
- ``capacity=N`` — ring buffer keeping the newest *N* entries.

Listeners are called synchronously after each append so a UI can
render entries as they arrive.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, tzinfo
from enum import StrEnum

from togglesync._clock import ClockPort, SystemClock

logger = logging.getLogger(__name__)


class Direction(StrEnum):
    """Where an event came from."""

    IN = "in"
    OUT = "out"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One immutable event log line."""

    timestamp: datetime
    direction: Direction
    text: str

    def format(self, tz: tzinfo | None = None) -> str:
        """Render as ``[HH:MM:SS.mmm] text`` in *tz*.

        Timestamps are stored in UTC; without *tz* the line shows the
        machine's local time.
        """
        stamp = self.timestamp.astimezone(tz).strftime("%H:%M:%S.%f")[:-3]
        return f"[{stamp}] {self.text}"


EntryListener = Callable[[LogEntry], None]


class EventLog:
    """Ordered, optionally bounded record of engine events.

    Args:
        capacity: Maximum number of entries kept, or ``None`` for no
            limit.
        clock: Timestamp source used by :meth:`add`.
    """

    def __init__(
        self,
        *,
        capacity: int | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        if capacity is not None and capacity < 1:
            msg = f"capacity must be at least 1, got {capacity}"
            raise ValueError(msg)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._clock = clock if clock is not None else SystemClock()
        self._listeners: list[EntryListener] = []

    @property
    def capacity(self) -> int | None:
        return self._entries.maxlen

    def record(self, entry: LogEntry) -> None:
        """Append *entry* and notify listeners."""
        self._entries.append(entry)
        logger.debug(
            "[%s] %s",
            entry.direction,
            entry.text,
            extra={"direction": entry.direction},
        )
        for listener in self._listeners:
            try:
                listener(entry)
            except Exception:
                logger.exception("Event log listener failed")

    def add(self, direction: Direction, text: str) -> LogEntry:
        """Timestamp *text* with the clock and record it."""
        entry = LogEntry(timestamp=self._clock.now(), direction=direction, text=text)
        self.record(entry)
        return entry

    def snapshot(self) -> tuple[LogEntry, ...]:
        """Return all retained entries, oldest first."""
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def add_listener(self, listener: EntryListener) -> None:
        """Call *listener* with every entry recorded from now on."""
        self._listeners.append(listener)

    def __len__(self) -> int:
        return len(self._entries)
