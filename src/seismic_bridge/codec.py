"""Serialize events to NDJSON records.

Records are flat JSON objects: the dataclass fields of the event, with
``timestamp`` rendered as RFC 3339 and enums as their values.  ``None``
fields are kept so every record of one ``event_type`` has the same keys.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

import orjson

from seismic_bridge.alarm import SeismicEpisode
from seismic_bridge.models import Event


def event_to_dict(event: Event) -> dict[str, Any]:
    """Return *event* as a plain dict (enums and datetimes left to orjson)."""
    return asdict(event)


def encode_event(event: Event) -> bytes:
    """Serialize *event* into a newline-terminated NDJSON line."""
    return orjson.dumps(asdict(event), option=orjson.OPT_APPEND_NEWLINE)


def encode_message(message: dict[str, Any]) -> str:
    """Serialize a control/replay message for text transports (WebSocket)."""
    return orjson.dumps(message).decode()


def episode_to_dict(episode: SeismicEpisode) -> dict[str, Any]:
    return asdict(episode)
