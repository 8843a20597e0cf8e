"""Tests for the filter module."""

import pytest

from seismic_bridge.config import FilterConfig
from seismic_bridge.filter import EventFilter
from seismic_bridge.models import AlarmTransition, Fault, RawLine, Sample


def test_default_drops_raw_lines() -> None:
    """The default config records everything except raw lines."""
    f = EventFilter(FilterConfig())
    assert f.apply(RawLine(text="noise")) is None
    sample = Sample(accel_z=9.8, complete=True)
    assert f.apply(sample) is sample


def test_drop_types() -> None:
    f = EventFilter(FilterConfig(drop_types=["fault", "connection"]))
    assert f.apply(Fault(message="x")) is None
    assert f.apply(RawLine(text="kept")) is not None


def test_keep_types_match() -> None:
    f = EventFilter(FilterConfig(keep_types=["alarm"], drop_types=[]))
    event = AlarmTransition()
    assert f(event) is event


def test_keep_types_no_match() -> None:
    f = EventFilter(FilterConfig(keep_types=["alarm"], drop_types=[]))
    assert f(Sample()) is None


def test_drop_wins_over_keep() -> None:
    """A type listed in both lists is dropped."""
    f = EventFilter(FilterConfig(keep_types=["fault"], drop_types=["fault"]))
    assert f.apply(Fault(message="x")) is None


@pytest.mark.parametrize("event", [RawLine(), Sample(), AlarmTransition(), Fault()])
def test_empty_lists_allow_all(event) -> None:
    f = EventFilter(FilterConfig(keep_types=[], drop_types=[]))
    assert f.apply(event) is event
