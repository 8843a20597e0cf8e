"""Dataclass models for seismic-bridge events.

Every event is a frozen dataclass carrying an ``event_type`` discriminator
and a ``timestamp``.  All models serialize via ``dataclasses.asdict()``
followed by ``orjson.dumps()`` (see :mod:`seismic_bridge.codec`).
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union


class AlarmStatus(str, enum.Enum):
    """Binary alarm output."""

    OFF = "off"
    ON = "on"


class AlarmCause(str, enum.Enum):
    """Who or what drove an alarm transition."""

    THRESHOLD = "threshold"
    MANUAL = "manual"
    EXTERNAL = "external"


ACCEL_FIELDS = ("accel_x", "accel_y", "accel_z")
GYRO_FIELDS = ("gyro_x", "gyro_y", "gyro_z")
SAMPLE_FIELDS = ACCEL_FIELDS + GYRO_FIELDS + ("temperature",)


@dataclass(frozen=True)
class RawLine:
    """Unparsed source text, retained whether or not it was classified."""

    event_type: str = "raw_line"
    timestamp: Optional[datetime] = None
    text: str = ""


@dataclass(frozen=True)
class Sample:
    """A sensor snapshot.

    Any axis may be ``None`` while values are still accumulating.
    ``complete`` is True only when all three acceleration axes were
    refreshed since the previous snapshot boundary; only complete samples
    enter the sample history and drive the alarm engine.
    """

    event_type: str = "sample"
    timestamp: Optional[datetime] = None
    accel_x: Optional[float] = None
    accel_y: Optional[float] = None
    accel_z: Optional[float] = None
    gyro_x: Optional[float] = None
    gyro_y: Optional[float] = None
    gyro_z: Optional[float] = None
    temperature: Optional[float] = None
    complete: bool = False


@dataclass(frozen=True)
class AlarmTransition:
    """An alarm state change.

    ``reason`` distinguishes threshold transitions (``triggered``,
    ``held_off``, ``retriggered``, ``ended``); ``source`` names the
    physical origin of a manual stop reported by the device (e.g.
    ``button``).
    """

    event_type: str = "alarm"
    timestamp: Optional[datetime] = None
    state: AlarmStatus = AlarmStatus.OFF
    cause: AlarmCause = AlarmCause.THRESHOLD
    magnitude: Optional[float] = None
    reason: Optional[str] = None
    source: Optional[str] = None


@dataclass(frozen=True)
class ConnectionStatus:
    """Link state of an upstream service (WiFi, AWS IoT, serial...)."""

    event_type: str = "connection"
    timestamp: Optional[datetime] = None
    service: str = ""
    connected: bool = False


@dataclass(frozen=True)
class Fault:
    """A transport-level failure reported by a source or command sink."""

    event_type: str = "fault"
    timestamp: Optional[datetime] = None
    message: str = ""


Event = Union[RawLine, Sample, AlarmTransition, ConnectionStatus, Fault]

EVENT_TYPES = ("raw_line", "sample", "alarm", "connection", "fault")
