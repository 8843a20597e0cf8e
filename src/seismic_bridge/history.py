"""Bounded in-memory event history.

A :class:`HistoryBuffer` is a fixed-capacity FIFO ring.  Appends beyond
capacity evict the oldest entry.  Reads return tuples copied under the
lock, so dashboards can query from any thread while the station keeps
appending.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from seismic_bridge.models import Event

Window = Union[float, timedelta, Callable[[Event], bool]]


class HistoryBuffer:
    """Thread-safe ring buffer of events.

    Parameters
    ----------
    capacity:
        Maximum number of retained events.
    name:
        Label used in logs and reprs.
    """

    def __init__(self, capacity: int, name: str = "history") -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.name = name
        self._events: deque[Event] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def __repr__(self) -> str:
        return f"HistoryBuffer(name={self.name!r}, size={len(self)}, capacity={self.capacity})"

    def append(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    def snapshot(self) -> tuple[Event, ...]:
        """All retained events, oldest first."""
        with self._lock:
            return tuple(self._events)

    def latest(self, n: int) -> tuple[Event, ...]:
        """The *n* most recent events, oldest first."""
        if n <= 0:
            return ()
        return self.snapshot()[-n:]

    def window(self, selector: Window, now: Optional[datetime] = None) -> tuple[Event, ...]:
        """Select retained events by age or predicate.

        Parameters
        ----------
        selector:
            Seconds (float) or a :class:`~datetime.timedelta`: events with
            ``timestamp >= now - selector``.  A callable: events for which it
            returns True.
        now:
            Reference time for duration windows.  Defaults to the current
            UTC time.

        Returns
        -------
        tuple
            Matching events, oldest first.  When a duration window matches
            nothing, every retained event is returned instead.
        """
        events = self.snapshot()
        if callable(selector):
            return tuple(e for e in events if selector(e))

        duration = selector if isinstance(selector, timedelta) else timedelta(seconds=selector)
        cutoff = (now or datetime.now(timezone.utc)) - duration
        selected = tuple(
            e for e in events if e.timestamp is not None and e.timestamp >= cutoff
        )
        return selected or events
