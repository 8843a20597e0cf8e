"""Tests for the simulator module."""

import math
import random
from datetime import datetime, timedelta, timezone

import pytest

from seismic_bridge.config import SimulatorConfig
from seismic_bridge.simulator import END_FLOOR, MANUAL_DECAY, SignalModel

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _model(probability: float = 0.0, seed: int = 7) -> SignalModel:
    return SignalModel(SimulatorConfig(event_probability=probability), rng=random.Random(seed))


def _ticks(model: SignalModel, n: int) -> list:
    return [model.tick(T0 + timedelta(seconds=i)) for i in range(n)]


def test_quiet_samples_measure_one_g() -> None:
    """Without events the acceleration magnitude stays within noise of 1 g."""
    model = _model()
    for tick in _ticks(model, 200):
        s = tick.sample
        magnitude = math.sqrt(s.accel_x ** 2 + s.accel_y ** 2 + s.accel_z ** 2)
        assert magnitude == pytest.approx(9.80665, abs=0.1)
        assert tick.intensity == 0.0
        assert s.complete is True
        assert 22.0 <= s.temperature <= 27.0


def test_same_seed_same_signal() -> None:
    a = _ticks(_model(probability=0.2, seed=42), 50)
    b = _ticks(_model(probability=0.2, seed=42), 50)
    assert [t.sample for t in a] == [t.sample for t in b]


def test_trigger_starts_strong_event() -> None:
    model = _model()
    magnitude = model.trigger()
    assert 5.0 <= magnitude <= 10.0
    assert model.decay_rate == MANUAL_DECAY
    assert model.phase == 0.0

    first = model.tick(T0)
    assert first.intensity == pytest.approx(magnitude)
    assert model.intensity == pytest.approx(magnitude * MANUAL_DECAY)
    assert model.phase > 0.0


def test_event_decays_to_zero() -> None:
    """A triggered event fades below the floor and resets its state."""
    model = _model()
    model.trigger()
    ticks = _ticks(model, 80)
    assert not model.active
    assert model.phase == 0.0
    intensities = [t.intensity for t in ticks]
    assert intensities[0] > intensities[1] > intensities[2]
    assert 0.0 in intensities
    ended = intensities.index(0.0)
    assert all(i >= END_FLOOR for i in intensities[:ended])


def test_quiet_tick_follows_every_event() -> None:
    """Even at probability 1 an ended event is followed by one zero-intensity tick."""
    model = _model(probability=1.0)
    ticks = _ticks(model, 200)
    intensities = [t.intensity for t in ticks]
    assert intensities[0] >= 1.0
    assert 0.0 in intensities
    for i, value in enumerate(intensities[:-1]):
        if value == 0.0:
            assert intensities[i + 1] > 0.0
