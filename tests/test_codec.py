"""Tests for the codec module."""

from datetime import datetime, timezone

import orjson

from seismic_bridge.alarm import SeismicEpisode
from seismic_bridge.codec import encode_event, encode_message, episode_to_dict
from seismic_bridge.models import AlarmCause, AlarmStatus, AlarmTransition, Sample

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_sample_record() -> None:
    """A sample encodes as one flat NDJSON line with RFC 3339 timestamp."""
    data = encode_event(Sample(timestamp=NOW, accel_x=0.1, accel_y=0.2, accel_z=9.8, complete=True))
    assert data.endswith(b"\n")
    assert data.count(b"\n") == 1
    record = orjson.loads(data)
    assert record["event_type"] == "sample"
    assert record["timestamp"] == "2025-03-01T12:00:00+00:00"
    assert record["accel_z"] == 9.8
    assert record["gyro_x"] is None
    assert record["complete"] is True


def test_alarm_enums_render_as_values() -> None:
    record = orjson.loads(encode_event(
        AlarmTransition(
            timestamp=NOW,
            state=AlarmStatus.ON,
            cause=AlarmCause.THRESHOLD,
            magnitude=4.2,
            reason="triggered",
        )
    ))
    assert record["state"] == "on"
    assert record["cause"] == "threshold"
    assert record["reason"] == "triggered"
    assert record["source"] is None


def test_encode_message_is_text() -> None:
    text = encode_message({"type": "history", "events": []})
    assert isinstance(text, str)
    assert orjson.loads(text) == {"type": "history", "events": []}


def test_episode_to_dict() -> None:
    episode = SeismicEpisode(
        started_at=NOW,
        ended_at=NOW,
        duration_s=0.0,
        peak_magnitude=6.5,
        alarm_triggered=True,
    )
    d = episode_to_dict(episode)
    assert d["peak_magnitude"] == 6.5
    assert orjson.loads(encode_message(d))["started_at"] == "2025-03-01T12:00:00+00:00"
