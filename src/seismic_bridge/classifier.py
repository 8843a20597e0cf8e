"""Classify raw telemetry lines from the sensor board into typed events.

Classification pipeline (markers are checked independently)::

    raw line
      │
      ├─ "Acceleration X:" … "Temperature:"  → latch update, no event
      ├─ "---" with a non-empty latch         → Sample (latch snapshot)
      ├─ "Publishing to AWS IoT: {…}"         → Sample (payload), or nothing if invalid
      ├─ "Alarm ON" / "Alarm OFF"             → AlarmTransition(cause=external)
      ├─ "Alarm stopped by <source>"          → AlarmTransition(cause=manual)
      ├─ connection markers                   → ConnectionStatus
      └─ anything else                        → []  (caller keeps the RawLine)

Malformed numbers and payloads are tolerated: the field (or the whole
payload) is skipped and no fault is raised.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import jsonschema
import orjson

from seismic_bridge.models import (
    ACCEL_FIELDS,
    AlarmCause,
    AlarmStatus,
    AlarmTransition,
    ConnectionStatus,
    Event,
    Sample,
)

logger = logging.getLogger(__name__)

# Axis marker → latch field.  The value pattern is deliberately permissive;
# float() has the final say.
AXIS_MARKERS: dict[str, str] = {
    "Acceleration X:": "accel_x",
    "Acceleration Y:": "accel_y",
    "Acceleration Z:": "accel_z",
    "Gyro X:": "gyro_x",
    "Gyro Y:": "gyro_y",
    "Gyro Z:": "gyro_z",
    "Temperature:": "temperature",
}

BOUNDARY_MARKER = "---"
PAYLOAD_MARKER = "Publishing to AWS IoT:"

_AXIS_PATTERNS = {
    marker: re.compile(re.escape(marker) + r"\s*([-\d.]+)")
    for marker in AXIS_MARKERS
}
_STOPPED_BY_RE = re.compile(r"Alarm stopped by\s+(\S+)")

# Payload keys as printed by the firmware → Sample fields.
PAYLOAD_KEYS: dict[str, str] = {
    "accelX": "accel_x",
    "accelY": "accel_y",
    "accelZ": "accel_z",
    "gyroX": "gyro_x",
    "gyroY": "gyro_y",
    "gyroZ": "gyro_z",
    "temperature": "temperature",
}

PAYLOAD_SCHEMA = {
    "type": "object",
    "required": ["accelX", "accelY", "accelZ"],
    "properties": {key: {"type": "number"} for key in PAYLOAD_KEYS},
}
_payload_validator = jsonschema.Draft7Validator(PAYLOAD_SCHEMA)


@dataclass
class SampleLatch:
    """Last-known value per sensor axis.

    Fields are overwritten one at a time as axis lines arrive and are
    never cleared by :meth:`flush`, so an axis that is not refreshed
    keeps reporting its previous value.
    """

    values: dict[str, float] = field(default_factory=dict)
    refreshed: set[str] = field(default_factory=set)

    def set(self, name: str, value: float) -> None:
        self.values[name] = value
        self.refreshed.add(name)

    def is_empty(self) -> bool:
        return not self.values

    def flush(self, now: datetime) -> Sample:
        """Snapshot the latch into an immutable :class:`Sample`."""
        complete = all(name in self.refreshed for name in ACCEL_FIELDS)
        self.refreshed.clear()
        return Sample(timestamp=now, complete=complete, **self.values)


def classify(text: str, now: datetime, latch: SampleLatch) -> list[Event]:
    """Classify a single raw line.

    Parameters
    ----------
    text:
        One line of source output, without the trailing newline.
    now:
        Timestamp applied to any emitted event.
    latch:
        The caller-owned accumulator for axis values.  Updated in place.

    Returns
    -------
    list
        Zero or more events.  The :class:`~seismic_bridge.models.RawLine`
        for *text* is never included; retaining it is the caller's job.
    """
    events: list[Event] = []

    # Step 1: axis values accumulate in the latch
    for marker, name in AXIS_MARKERS.items():
        if marker not in text:
            continue
        value = _parse_axis(marker, text)
        if value is not None:
            latch.set(name, value)

    # Step 2: snapshot boundary
    if BOUNDARY_MARKER in text and not latch.is_empty():
        events.append(latch.flush(now))

    # Step 3: self-describing payload
    if PAYLOAD_MARKER in text:
        sample = _parse_payload(text, now)
        if sample is not None:
            events.append(sample)

    # Step 4: alarm state reported by the device
    alarm = _parse_alarm(text, now)
    if alarm is not None:
        events.append(alarm)

    # Step 5: upstream connection markers
    status = _parse_connection(text, now)
    if status is not None:
        events.append(status)

    return events


# ── helpers ─────────────────────────────────────────────────────────


def _parse_axis(marker: str, text: str) -> Optional[float]:
    match = _AXIS_PATTERNS[marker].search(text)
    if match is None:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        logger.debug("Ignoring malformed %s value: %r", marker, match.group(1))
        return None


def _parse_payload(text: str, now: datetime) -> Optional[Sample]:
    """Parse the JSON record after :data:`PAYLOAD_MARKER`; ``None`` if invalid."""
    start = text.find("{", text.index(PAYLOAD_MARKER))
    if start < 0:
        return None
    try:
        record = orjson.loads(text[start:])
    except orjson.JSONDecodeError:
        logger.debug("Dropping unparseable payload: %r", text[start:])
        return None
    if not _payload_validator.is_valid(record):
        logger.debug("Dropping payload failing schema: %r", record)
        return None

    values = {
        PAYLOAD_KEYS[key]: float(record[key])
        for key in PAYLOAD_KEYS
        if key in record
    }
    return Sample(timestamp=now, complete=True, **values)


def _parse_alarm(text: str, now: datetime) -> Optional[AlarmTransition]:
    if "Alarm ON" in text:
        return AlarmTransition(
            timestamp=now, state=AlarmStatus.ON, cause=AlarmCause.EXTERNAL
        )
    if "Alarm OFF" in text:
        return AlarmTransition(
            timestamp=now, state=AlarmStatus.OFF, cause=AlarmCause.EXTERNAL
        )
    match = _STOPPED_BY_RE.search(text)
    if match is not None:
        return AlarmTransition(
            timestamp=now,
            state=AlarmStatus.OFF,
            cause=AlarmCause.MANUAL,
            source=match.group(1),
        )
    return None


def _parse_connection(text: str, now: datetime) -> Optional[ConnectionStatus]:
    if "Connected to AWS IoT" in text:
        return ConnectionStatus(timestamp=now, service="AWS IoT", connected=True)
    if "Connected!" in text and "WiFi" in text:
        return ConnectionStatus(timestamp=now, service="WiFi", connected=True)
    if "MQTT not connected" in text:
        return ConnectionStatus(timestamp=now, service="MQTT", connected=False)
    if "Connection failed" in text:
        return ConnectionStatus(timestamp=now, service="AWS IoT", connected=False)
    return None
