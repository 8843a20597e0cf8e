"""Tests for the output module (StdoutSink, FileSink and Recorder)."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock, patch

import orjson

from seismic_bridge.config import FilterConfig
from seismic_bridge.filter import EventFilter
from seismic_bridge.history import HistoryBuffer
from seismic_bridge.hub import EventHub
from seismic_bridge.models import Fault, RawLine, Sample
from seismic_bridge.output import FileSink, Recorder, StdoutSink


class _ListSink:
    def __init__(self) -> None:
        self.lines: list[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        self.lines.append(data)

    def close(self) -> None:
        self.closed = True


class TestStdoutSink:
    """Tests for :class:`StdoutSink`."""

    def test_stdout_sink_writes_bytes(self) -> None:
        """StdoutSink writes raw bytes to stdout buffer."""
        sink = StdoutSink()
        data = b'{"event_type":"sample"}\n'

        mock_buffer = MagicMock()
        mock_stdout = MagicMock()
        mock_stdout.buffer = mock_buffer
        with patch("seismic_bridge.output.sys") as mock_sys:
            mock_sys.stdout = mock_stdout
            sink.write(data)
            mock_buffer.write.assert_called_once_with(data)
            mock_buffer.flush.assert_called_once()


class TestFileSink:
    """Tests for :class:`FileSink`."""

    def test_file_sink_creates_active_file(self, tmp_path: Path) -> None:
        """FileSink creates a ``.ndjson.active`` file on init."""
        sink = FileSink(
            output_dir=str(tmp_path),
            prefix="test",
            station_id="st-01",
            rotation_seconds=3600,
            rotation_bytes=1_000_000,
        )
        try:
            active_files = list(tmp_path.glob("*.ndjson.active"))
            assert len(active_files) == 1
            assert "test-st-01" in active_files[0].name
        finally:
            sink.close()

    def test_file_sink_rotation(self, tmp_path: Path) -> None:
        """After exceeding size, old file is renamed to .ndjson and new .active is created."""
        sink = FileSink(
            output_dir=str(tmp_path / "rec"),
            prefix="test",
            station_id="st-01",
            rotation_seconds=3600,
            rotation_bytes=100,
            flush_every_n=1,
        )
        try:
            sink.write(b"x" * 110)
            with patch("seismic_bridge.output.datetime") as mock_dt:
                mock_dt.now.return_value.strftime.return_value = "20990101T000000Z"
                sink.write(b"y" * 10)

            ndjson_files = list((tmp_path / "rec").glob("*.ndjson"))
            active_files = list((tmp_path / "rec").glob("*.ndjson.active"))

            assert len(ndjson_files) == 1, "Expected one completed .ndjson file"
            assert len(active_files) == 1, "Expected exactly one .active file"
            assert active_files[0].read_bytes() == b"y" * 10
        finally:
            sink.close()

    def test_file_sink_close_renames(self, tmp_path: Path) -> None:
        """close() renames ``.active`` to ``.ndjson``."""
        sink = FileSink(output_dir=str(tmp_path), prefix="test", station_id="st-01")
        sink.write(b'{"test": true}\n')
        sink.close()

        assert list(tmp_path.glob("*.ndjson.active")) == []
        (final,) = list(tmp_path.glob("*.ndjson"))
        assert final.read_bytes() == b'{"test": true}\n'


class TestRecorder:
    """Tests for :class:`Recorder`."""

    def test_records_backlog_then_live_events(self) -> None:
        """The replay backlog is written first, then live events, filtered."""
        hub = EventHub(HistoryBuffer(100, name="log"))
        hub.publish(Fault(message="before"))
        sink = _ListSink()
        recorder = Recorder(hub, sink, EventFilter(FilterConfig()))

        async def scenario() -> None:
            task = asyncio.create_task(recorder.run())
            await asyncio.sleep(0)
            hub.publish(RawLine(text="dropped by filter"))
            hub.publish(Sample(accel_z=9.8, complete=True))
            while recorder.written < 2:
                await asyncio.sleep(0.01)
            hub.close()
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())

        types = [orjson.loads(line)["event_type"] for line in sink.lines]
        assert types == ["fault", "sample"]
        assert recorder.written == 2
        assert sink.closed
        assert len(hub) == 0
