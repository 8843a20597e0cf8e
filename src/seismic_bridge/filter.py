"""Event filtering by event type.

Filter chain (evaluated in order)::

    1. ``event_type`` in ``drop_types``                       → drop
    2. ``keep_types`` non-empty AND ``event_type`` not in it  → drop
    3. Otherwise                                              → pass
"""

from __future__ import annotations

import logging
from typing import Optional

from seismic_bridge.config import FilterConfig
from seismic_bridge.models import Event

logger = logging.getLogger(__name__)


class EventFilter:
    """Stateless filter that decides whether an event is recorded."""

    def __init__(self, config: FilterConfig) -> None:
        self._drop_types: set[str] = set(config.drop_types)
        self._keep_types: set[str] = set(config.keep_types)

    def __call__(self, event: Event) -> Optional[Event]:
        """Return *event* if it passes all filters, else ``None``."""
        return self.apply(event)

    def apply(self, event: Event) -> Optional[Event]:
        """Evaluate the filter chain.

        Parameters
        ----------
        event:
            Any published event.

        Returns
        -------
        Event or None
            The input unchanged when it passes, ``None`` when filtered.
        """
        # 1. Deny-list
        if event.event_type in self._drop_types:
            return None

        # 2. Keep-list (allow-list)
        if self._keep_types and event.event_type not in self._keep_types:
            logger.debug("Filtered %s: not in keep_types", event.event_type)
            return None

        return event
