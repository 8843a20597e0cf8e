"""Fan-out of events to live subscribers.

Every subscriber owns a bounded queue.  :meth:`EventHub.publish` never
waits: when a subscriber's queue is full the oldest undelivered event is
dropped for that subscriber only.

The hub also owns the journal (the operational-log
:class:`~seismic_bridge.history.HistoryBuffer`).  Appending to the
journal and delivering to subscribers happen under one lock, and
subscription takes its replay slice under the same lock, so a new
subscriber sees every event exactly once: either in the replay or live.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import deque
from typing import Callable, Optional

from seismic_bridge.history import HistoryBuffer
from seismic_bridge.models import Event

logger = logging.getLogger(__name__)


def _not_a_sample(event: Event) -> bool:
    return event.event_type != "sample"


class Subscription:
    """One consumer's view of the live feed.

    Iterate with ``async for``; once the subscription is closed,
    iteration drains what is already queued and then stops.
    """

    def __init__(self, queue_size: int, name: str = "") -> None:
        self.id = str(uuid.uuid4())
        self.name = name or self.id[:8]
        self.dropped = 0
        self._queue: deque[Event] = deque(maxlen=queue_size)
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: Event) -> None:
        """Queue *event*; drops the oldest queued event when full."""
        if self._closed:
            return
        if len(self._queue) == self._queue.maxlen:
            self.dropped += 1
            logger.debug("Subscriber %s overflow, dropped oldest event", self.name)
        self._queue.append(event)
        self._ready.set()

    def pending(self) -> tuple[Event, ...]:
        """Remove and return everything currently queued."""
        events = tuple(self._queue)
        self._queue.clear()
        return events

    def close(self) -> None:
        """Stop accepting events; already queued events can still be read."""
        self._closed = True
        self._ready.set()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Event:
        while True:
            if self._queue:
                return self._queue.popleft()
            if self._closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()


class EventHub:
    """Broadcast events to every active subscription.

    Parameters
    ----------
    journal:
        Buffer that retains published events for replay.
    replay_size:
        Default number of journal entries handed to a new subscriber.
    queue_size:
        Per-subscriber queue bound.
    journal_filter:
        Decides which published events are retained in the journal.
        Defaults to everything except samples, which have their own
        history.
    """

    def __init__(
        self,
        journal: HistoryBuffer,
        replay_size: int = 100,
        queue_size: int = 256,
        journal_filter: Callable[[Event], bool] = _not_a_sample,
    ) -> None:
        self._journal = journal
        self._replay_size = replay_size
        self._queue_size = queue_size
        self._journal_filter = journal_filter
        self._subscribers: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    @property
    def journal(self) -> HistoryBuffer:
        return self._journal

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self, replay: Optional[int] = None, name: str = ""
    ) -> tuple[Subscription, tuple[Event, ...]]:
        """Register a subscriber.

        Returns
        -------
        tuple
            The new :class:`Subscription` and the replay backlog (oldest
            first, at most *replay* entries, default ``replay_size``).
        """
        sub = Subscription(self._queue_size, name=name)
        with self._lock:
            backlog = self._journal.latest(
                self._replay_size if replay is None else replay
            )
            self._subscribers[sub.id] = sub
        logger.info(
            "Subscriber %s attached (replay=%d, total=%d)",
            sub.name,
            len(backlog),
            len(self._subscribers),
        )
        return sub, backlog

    def unsubscribe(self, subscription_id: str) -> bool:
        """Detach a subscriber; returns False if it was not attached."""
        with self._lock:
            sub = self._subscribers.pop(subscription_id, None)
        if sub is None:
            return False
        sub.close()
        logger.info(
            "Subscriber %s detached (dropped=%d, total=%d)",
            sub.name,
            sub.dropped,
            len(self._subscribers),
        )
        return True

    def publish(self, event: Event) -> None:
        """Journal *event* (if it qualifies) and deliver it to every subscriber."""
        with self._lock:
            if self._journal_filter(event):
                self._journal.append(event)
            subscribers = list(self._subscribers.values())
            for sub in subscribers:
                sub.deliver(event)

    def close(self) -> None:
        """Detach every subscriber."""
        for subscription_id in list(self._subscribers):
            self.unsubscribe(subscription_id)
