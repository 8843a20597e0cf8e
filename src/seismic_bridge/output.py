"""Event recorders: NDJSON to rotating files or to stdout.

A :class:`Recorder` is an ordinary hub subscriber.  Every event it
receives passes through the :class:`~seismic_bridge.filter.EventFilter`,
is encoded by :func:`~seismic_bridge.codec.encode_event` and written to a
sink.

FileSink
    Writes to ``{prefix}-{station_id}-{timestamp}.ndjson.active`` and
    rotates on a time or size threshold: ``fsync``, atomic rename to
    ``.ndjson``, then a fresh ``.active`` file.

StdoutSink
    Writes raw bytes to ``sys.stdout.buffer``.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from seismic_bridge.codec import encode_event
from seismic_bridge.config import RecorderConfig
from seismic_bridge.filter import EventFilter
from seismic_bridge.hub import EventHub

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def write(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class StdoutSink:
    """Write NDJSON bytes directly to stdout."""

    def write(self, data: bytes) -> None:
        """Write *data* to ``sys.stdout.buffer``.

        Raises
        ------
        BrokenPipeError
            If the stdout consumer has gone away.
        """
        try:
            sys.stdout.buffer.write(data)
            sys.stdout.buffer.flush()
        except BrokenPipeError:
            logger.warning("stdout broken — consumer likely exited")
            raise

    def close(self) -> None:
        """No-op for stdout."""


class FileSink:
    """Rotating NDJSON file writer.

    Parameters
    ----------
    output_dir:
        Directory for recordings; created if missing.
    prefix:
        Filename prefix.
    station_id:
        Station identifier included in the filename.
    rotation_seconds, rotation_bytes:
        Rotate once the active file is this old or this large.
    flush_every_n, flush_interval_ms:
        Flush after this many events or this much time, whichever first.
    """

    def __init__(
        self,
        output_dir: str,
        prefix: str = "events",
        station_id: str = "station-01",
        rotation_seconds: int = 3600,
        rotation_bytes: int = 52428800,
        flush_every_n: int = 50,
        flush_interval_ms: int = 1000,
    ) -> None:
        self._dir = Path(output_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._prefix = prefix
        self._station_id = station_id
        self._rotation_seconds = rotation_seconds
        self._rotation_bytes = rotation_bytes
        self._flush_every_n = flush_every_n
        self._flush_interval = flush_interval_ms / 1000.0

        self._fh = None
        self._active_path: Optional[Path] = None
        self._final_path: Optional[Path] = None
        self._size = 0
        self._unflushed = 0
        self._opened_at = 0.0
        self._flushed_at = 0.0

        self._open()

    @classmethod
    def from_config(cls, config: RecorderConfig, station_id: str) -> FileSink:
        return cls(
            output_dir=config.output_dir,
            prefix=config.file_prefix,
            station_id=station_id,
            rotation_seconds=config.rotation.interval_seconds,
            rotation_bytes=config.rotation.max_size_bytes,
            flush_every_n=config.flush.every_n_events,
            flush_interval_ms=config.flush.interval_ms,
        )

    def write(self, data: bytes) -> None:
        """Append *data*, rotating first if a threshold was reached."""
        now = time.monotonic()
        if self._size >= self._rotation_bytes or now - self._opened_at >= self._rotation_seconds:
            self._finish()
            self._open()

        self._fh.write(data)
        self._size += len(data)
        self._unflushed += 1

        if self._unflushed >= self._flush_every_n or now - self._flushed_at >= self._flush_interval:
            self._flush()

    def close(self) -> None:
        """Flush, fsync and finalize the active file."""
        if self._fh and not self._fh.closed:
            self._finish()

    # ── internal ────────────────────────────────────────────────────

    def _open(self) -> None:
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        base = f"{self._prefix}-{self._station_id}-{ts}"
        self._active_path = self._dir / f"{base}.ndjson.active"
        self._final_path = self._dir / f"{base}.ndjson"
        self._fh = open(self._active_path, "ab")
        self._size = 0
        self._unflushed = 0
        self._opened_at = self._flushed_at = time.monotonic()
        logger.info("Recording to %s", self._active_path.name)

    def _finish(self) -> None:
        self._flush()
        os.fsync(self._fh.fileno())
        self._fh.close()
        os.rename(self._active_path, self._final_path)
        logger.info("Finalized %s (%d bytes)", self._final_path.name, self._size)

    def _flush(self) -> None:
        self._fh.flush()
        self._unflushed = 0
        self._flushed_at = time.monotonic()


class Recorder:
    """Subscribe to the hub and write filtered events to a sink.

    The replay backlog is recorded first, so a recorder started after the
    station still captures the recent operational log.
    """

    def __init__(self, hub: EventHub, sink: Sink, event_filter: EventFilter) -> None:
        self._hub = hub
        self._sink = sink
        self._filter = event_filter
        self.written = 0

    async def run(self) -> None:
        sub, backlog = self._hub.subscribe(name="recorder")
        try:
            for event in backlog:
                self._record(event)
            async for event in sub:
                self._record(event)
        except BrokenPipeError:
            logger.warning("Recorder output closed, stopping")
        finally:
            self._hub.unsubscribe(sub.id)
            self._sink.close()
            logger.info("Recorder stopped (%d events written)", self.written)

    def _record(self, event) -> None:
        if self._filter.apply(event) is None:
            return
        self._sink.write(encode_event(event))
        self.written += 1
