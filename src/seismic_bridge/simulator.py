"""Synthetic accelerometer/gyroscope source used when no board is attached.

Each tick composes three independent parts:

* a slow tilt random walk, turned into a gravity vector whose magnitude is
  held at exactly 1 g;
* a decaying seismic vibration (vertical, horizontal and rotational
  sinusoids scaled by the current intensity);
* uniform sensor noise, plus a slow temperature drift.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from seismic_bridge.alarm import STANDARD_GRAVITY
from seismic_bridge.config import SimulatorConfig
from seismic_bridge.models import Sample

logger = logging.getLogger(__name__)

TILT_STEP = 0.02
TILT_LIMIT = 0.5

MAGNITUDE_RANGE = (1.0, 10.0)
DECAY_RANGE = (0.85, 0.95)
MANUAL_MAGNITUDE_RANGE = (5.0, 10.0)
MANUAL_DECAY = 0.92
END_FLOOR = 0.1

ACCEL_NOISE = 0.05  # peak-to-peak, m/s²
GYRO_NOISE = 0.5    # peak-to-peak


@dataclass(frozen=True)
class SimulatedTick:
    """One generated reading and the intensity that shaped it."""

    sample: Sample
    intensity: float


class SignalModel:
    """Stateful generator of synthetic sensor samples.

    Parameters
    ----------
    config:
        Tick period and spontaneous-event probability.
    rng:
        Random source.  Defaults to ``random.Random(config.seed)``.
    """

    def __init__(self, config: SimulatorConfig, rng: Optional[random.Random] = None) -> None:
        self.tick_seconds = config.tick_seconds
        self._event_probability = config.event_probability
        self._rng = rng or random.Random(config.seed)
        self._tilt_x = 0.0
        self._tilt_y = 0.0
        self.intensity = 0.0
        self.decay_rate = 0.0
        self.phase = 0.0
        self._just_ended = False

    @property
    def active(self) -> bool:
        return self.intensity > 0.0

    def trigger(self) -> float:
        """Start a strong, slowly decaying event, replacing any current one."""
        self.intensity = self._rng.uniform(*MANUAL_MAGNITUDE_RANGE)
        self.decay_rate = MANUAL_DECAY
        self.phase = 0.0
        logger.warning("Simulated earthquake triggered (magnitude %.1f)", self.intensity)
        return self.intensity

    def tick(self, now: datetime) -> SimulatedTick:
        """Advance one period and return the composed reading."""
        rng = self._rng
        base_x, base_y, base_z = self._gravity()

        # A quiet tick always follows an event so consumers observe its end.
        if self._just_ended:
            self._just_ended = False
        elif not self.active and rng.random() < self._event_probability:
            self.intensity = rng.uniform(*MAGNITUDE_RANGE)
            self.decay_rate = rng.uniform(*DECAY_RANGE)
            self.phase = 0.0
            logger.info("Spontaneous seismic event (magnitude %.1f)", self.intensity)

        intensity = self.intensity
        quake = (0.0,) * 6
        if self.active:
            quake = self._vibration()
            self.intensity *= self.decay_rate
            if self.intensity < END_FLOOR:
                self.intensity = 0.0
                self.phase = 0.0
                self._just_ended = True

        qax, qay, qaz, qgx, qgy, qgz = quake
        sample = Sample(
            timestamp=now,
            accel_x=base_x + qax + self._noise(ACCEL_NOISE),
            accel_y=base_y + qay + self._noise(ACCEL_NOISE),
            accel_z=base_z + qaz + self._noise(ACCEL_NOISE),
            gyro_x=qgx + self._noise(GYRO_NOISE),
            gyro_y=qgy + self._noise(GYRO_NOISE),
            gyro_z=qgz + self._noise(GYRO_NOISE),
            temperature=24.5
            + math.sin(now.timestamp() / 30.0) * 2.0
            + self._noise(0.2),
            complete=True,
        )
        return SimulatedTick(sample=sample, intensity=intensity)

    # ── helpers ─────────────────────────────────────────────────────

    def _gravity(self) -> tuple[float, float, float]:
        """Step the tilt walk and return a 1 g vector for the new attitude."""
        self._tilt_x = _clamp(self._tilt_x + self._noise(TILT_STEP), TILT_LIMIT)
        self._tilt_y = _clamp(self._tilt_y + self._noise(TILT_STEP), TILT_LIMIT)

        x = -self._tilt_y * STANDARD_GRAVITY
        y = self._tilt_x * STANDARD_GRAVITY
        z = math.sqrt(max(0.0, STANDARD_GRAVITY ** 2 - x * x - y * y))
        norm = math.sqrt(x * x + y * y + z * z)
        scale = STANDARD_GRAVITY / norm
        return x * scale, y * scale, z * scale

    def _vibration(self) -> tuple[float, float, float, float, float, float]:
        """Advance the phase and return accel (x, y, z) + gyro (x, y, z) offsets."""
        self.phase += 0.5 + self._rng.random() * 0.5
        p, i = self.phase, self.intensity
        return (
            math.sin(p * 2.5) * i,          # S-wave
            math.cos(p * 2.8) * i * 0.8,    # S-wave
            math.sin(p * 3.14) * i * 0.7,   # P-wave (vertical)
            math.sin(p * 4.0) * i * 10.0,
            math.cos(p * 3.5) * i * 8.0,
            math.sin(p * 3.0) * i * 5.0,
        )

    def _noise(self, span: float) -> float:
        return (self._rng.random() - 0.5) * span


def _clamp(value: float, limit: float) -> float:
    return max(-limit, min(limit, value))
