"""Seismic alarm hysteresis state machine.

The engine consumes one intensity value per tick and moves between four
modes::

    OFF ──(I ≥ T_on)──▶ ON ──(I < T_on)──▶ HELD_OFF ──(I ≥ T_on)──▶ ON
     ▲                                        │
     └──────────────(I < T_clear)─────────────┘  (latch released, silent)

    any mode ──(activity ends: I < floor)──▶ OFF   (emits reason="ended")

    manual or device OFF during activity ──▶ SILENCED ──(ON request)──▶ ON

``HELD_OFF`` is the latched state: the alarm was switched off while an
event is still decaying.  ``SILENCED`` is the stronger latch left by an
operator or the device: thresholds cannot re-trigger it, only the end of
the activity or an explicit ON request releases it.

``peak`` tracks the largest intensity seen and survives OFF transitions
until :meth:`AlarmEngine.reset_peak`.
"""

from __future__ import annotations

import enum
import logging
import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from seismic_bridge.config import AlarmConfig
from seismic_bridge.models import AlarmCause, AlarmStatus, AlarmTransition, Sample

logger = logging.getLogger(__name__)

STANDARD_GRAVITY = 9.80665


class AlarmMode(enum.Enum):
    """Tagged alarm state."""

    OFF = "OFF"
    ON = "ON"
    HELD_OFF = "HELD_OFF"
    SILENCED = "SILENCED"


class _Edge(enum.Enum):
    """Threshold conditions evaluated against one intensity value."""

    ABOVE_TRIGGER = "above_trigger"
    BELOW_TRIGGER = "below_trigger"
    BELOW_CLEAR = "below_clear"


# (mode, edge) → (next mode, emitted reason or None).  Pairs not listed
# leave the mode unchanged.
TRANSITIONS: dict[tuple[AlarmMode, _Edge], tuple[AlarmMode, Optional[str]]] = {
    (AlarmMode.OFF, _Edge.ABOVE_TRIGGER): (AlarmMode.ON, "triggered"),
    (AlarmMode.ON, _Edge.BELOW_TRIGGER): (AlarmMode.HELD_OFF, "held_off"),
    (AlarmMode.ON, _Edge.BELOW_CLEAR): (AlarmMode.HELD_OFF, "held_off"),
    (AlarmMode.HELD_OFF, _Edge.ABOVE_TRIGGER): (AlarmMode.ON, "retriggered"),
    (AlarmMode.HELD_OFF, _Edge.BELOW_CLEAR): (AlarmMode.OFF, None),
}

_STATUS = {
    AlarmMode.OFF: AlarmStatus.OFF,
    AlarmMode.ON: AlarmStatus.ON,
    AlarmMode.HELD_OFF: AlarmStatus.OFF,
    AlarmMode.SILENCED: AlarmStatus.OFF,
}


@dataclass(frozen=True)
class SeismicEpisode:
    """Summary of one finished period of seismic activity."""

    started_at: datetime
    ended_at: datetime
    duration_s: float
    peak_magnitude: float
    alarm_triggered: bool


class AlarmEngine:
    """Stateful alarm evaluator.

    Parameters
    ----------
    config:
        Thresholds: ``trigger`` (T_on), ``clear`` (T_clear, at most
        ``trigger``) and ``floor`` (intensity below which activity ends).
    """

    def __init__(self, config: AlarmConfig) -> None:
        if config.clear > config.trigger:
            raise ValueError(
                f"alarm.clear ({config.clear}) must not exceed "
                f"alarm.trigger ({config.trigger})"
            )
        self._trigger = config.trigger
        self._clear = config.clear
        self._floor = config.floor
        self._mode = AlarmMode.OFF
        self._intensity = 0.0
        self._peak = 0.0
        self._active_since: Optional[datetime] = None
        self._episode_peak = 0.0
        self._episode_alarmed = False
        self._episodes: deque[SeismicEpisode] = deque(maxlen=config.episode_history)

    # ── read-only state ─────────────────────────────────────────────

    @property
    def mode(self) -> AlarmMode:
        return self._mode

    @property
    def status(self) -> AlarmStatus:
        return _STATUS[self._mode]

    @property
    def latched(self) -> bool:
        return self._mode in (AlarmMode.HELD_OFF, AlarmMode.SILENCED)

    @property
    def intensity(self) -> float:
        return self._intensity

    @property
    def peak(self) -> float:
        return self._peak

    @property
    def active(self) -> bool:
        """True while a seismic activity is in progress."""
        return self._active_since is not None

    def episodes(self) -> tuple[SeismicEpisode, ...]:
        """Finished activities, oldest first."""
        return tuple(self._episodes)

    # ── transitions ─────────────────────────────────────────────────

    def update(self, intensity: float, now: datetime) -> Optional[AlarmTransition]:
        """Feed one intensity value; return the resulting transition, if any.

        Non-finite values (an overflowing sensor reading) are discarded
        without touching any state.
        """
        if not math.isfinite(intensity):
            logger.warning("Ignoring non-finite intensity %r", intensity)
            return None
        intensity = max(0.0, intensity)
        self._intensity = intensity
        self._peak = max(self._peak, intensity)

        if intensity < self._floor:
            if self.active:
                return self._end_activity(now)
            return None

        if not self.active:
            self._active_since = now
            self._episode_peak = 0.0
            self._episode_alarmed = False
            if intensity < self._trigger:
                logger.info(
                    "Minor tremor detected (magnitude %.1f), below alarm threshold",
                    intensity,
                )
        self._episode_peak = max(self._episode_peak, intensity)

        edge = self._edge(intensity)
        next_mode, reason = TRANSITIONS.get((self._mode, edge), (self._mode, None))
        if next_mode is self._mode:
            return None

        previous, self._mode = self._mode, next_mode
        logger.debug("Alarm mode: %s → %s", previous.value, next_mode.value)
        if reason is None:
            return None
        if next_mode is AlarmMode.ON:
            self._episode_alarmed = True
            logger.warning("Earthquake alarm ON (magnitude %.1f)", intensity)
        else:
            logger.info(
                "Magnitude dropped below %.1f (current: %.1f), alarm deactivated",
                self._trigger,
                intensity,
            )
        return AlarmTransition(
            timestamp=now,
            state=_STATUS[next_mode],
            cause=AlarmCause.THRESHOLD,
            magnitude=intensity,
            reason=reason,
        )

    def manual_set(self, status: AlarmStatus, now: datetime) -> Optional[AlarmTransition]:
        """Force the alarm *status*.

        Returns ``None`` when the alarm already has that status, so
        repeated requests produce a single transition.

        An ON request releases any latch.  An OFF request during an
        activity leaves the engine ``SILENCED``, so thresholds cannot
        re-trigger it until the activity ends; this also applies when the
        status was already off (``HELD_OFF``).
        """
        unchanged = self.status is status
        self._mode = self._forced_mode(status)
        if unchanged:
            return None
        logger.info("Manual alarm %s", status.value.upper())
        return AlarmTransition(
            timestamp=now,
            state=status,
            cause=AlarmCause.MANUAL,
            magnitude=self._intensity,
        )

    def apply_external(self, transition: AlarmTransition) -> None:
        """Align the engine with an alarm state reported by the device."""
        unchanged = transition.state is self.status
        self._mode = self._forced_mode(transition.state)
        if unchanged:
            return
        logger.info(
            "Alarm %s reported by device (%s)",
            transition.state.value.upper(),
            transition.source or transition.cause.value,
        )

    def reset_peak(self) -> None:
        self._peak = 0.0
        logger.info("Peak intensity reset")

    # ── helpers ─────────────────────────────────────────────────────

    def _forced_mode(self, status: AlarmStatus) -> AlarmMode:
        if status is AlarmStatus.ON:
            return AlarmMode.ON
        return AlarmMode.SILENCED if self.active else AlarmMode.OFF

    def _edge(self, intensity: float) -> _Edge:
        if intensity >= self._trigger:
            return _Edge.ABOVE_TRIGGER
        if intensity < self._clear:
            return _Edge.BELOW_CLEAR
        return _Edge.BELOW_TRIGGER

    def _end_activity(self, now: datetime) -> AlarmTransition:
        started = self._active_since
        self._episodes.append(
            SeismicEpisode(
                started_at=started,
                ended_at=now,
                duration_s=(now - started).total_seconds(),
                peak_magnitude=self._episode_peak,
                alarm_triggered=self._episode_alarmed,
            )
        )
        self._active_since = None
        self._mode = AlarmMode.OFF
        logger.info("Seismic activity ended (peak %.1f)", self._episode_peak)
        return AlarmTransition(
            timestamp=now,
            state=AlarmStatus.OFF,
            cause=AlarmCause.THRESHOLD,
            magnitude=self._intensity,
            reason="ended",
        )


def intensity_from_sample(sample: Sample) -> float:
    """Estimate seismic intensity as the deviation of ‖accel‖ from 1 g."""
    magnitude = math.hypot(sample.accel_x, sample.accel_y, sample.accel_z)
    return abs(magnitude - STANDARD_GRAVITY)
