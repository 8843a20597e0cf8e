"""Line sources for the sensor board's serial output.

:class:`TcpLineSource` reads a newline-delimited stream exposed over TCP
by a serial bridge (``ser2net``, ``socat``…) and reconnects with
exponential backoff::

    INIT → CONNECTING → (success) → CONNECTED → (disconnect) → WAIT_BACKOFF → CONNECTING
                      → (failure) →              WAIT_BACKOFF → CONNECTING
    CONNECTED → (shutdown) → SHUTTING_DOWN

:class:`FileLineSource` reads a tty device node or replays a captured log.

Both expose :meth:`lines`, an async generator yielding decoded lines
(``str``) interleaved with :class:`~seismic_bridge.models.Fault` and
:class:`~seismic_bridge.models.ConnectionStatus` events describing the
link itself.  Transport errors never propagate out of the generator.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import random
import stat
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

import orjson

from seismic_bridge.config import ReconnectConfig, SourceConfig
from seismic_bridge.models import ConnectionStatus, Event, Fault

logger = logging.getLogger(__name__)

SERIAL_SERVICE = "serial"
MAX_LINE_BYTES = 64 * 1024

SourceItem = Union[str, Event]


class ConnectionState(enum.Enum):
    """States in the reconnect state machine."""

    INIT = "INIT"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    WAIT_BACKOFF = "WAIT_BACKOFF"
    SHUTTING_DOWN = "SHUTTING_DOWN"


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


def _encode_command(command: dict[str, Any]) -> bytes:
    return orjson.dumps(command) + b"\n"


class TcpLineSource:
    """Reads lines from a TCP serial bridge and writes commands back.

    Parameters
    ----------
    config:
        Source settings (host, port, reconnect params).
    """

    def __init__(self, config: SourceConfig) -> None:
        self._host = config.host
        self._port = config.port
        self._reconnect: ReconnectConfig = config.reconnect
        self._state = ConnectionState.INIT
        self._shutdown = asyncio.Event()
        self._writer: Optional[asyncio.StreamWriter] = None
        self._attempt = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def writable(self) -> bool:
        """True while a connection to the bridge is open."""
        return self._writer is not None and not self._writer.is_closing()

    def request_shutdown(self) -> None:
        """Signal the source to close gracefully (no reconnect)."""
        self._set_state(ConnectionState.SHUTTING_DOWN)
        self._shutdown.set()
        if self._writer is not None:
            self._writer.close()

    async def send_command(self, command: dict[str, Any]) -> None:
        """Write *command* as one JSON line.

        Raises
        ------
        ConnectionError
            When no connection is currently open.
        """
        if not self.writable:
            raise ConnectionError(f"Not connected to {self._host}:{self._port}")
        self._writer.write(_encode_command(command))
        await self._writer.drain()
        logger.info("Sent command: %s", command)

    async def lines(self) -> AsyncIterator[SourceItem]:
        """Yield lines until :meth:`request_shutdown` is called."""
        while not self._shutdown.is_set():
            async for item in self._connect_and_receive():
                yield item

            if self._shutdown.is_set():
                break

            await self._backoff()

    # ── internal: connect + receive ─────────────────────────────────

    async def _connect_and_receive(self) -> AsyncIterator[SourceItem]:
        self._set_state(ConnectionState.CONNECTING)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port, limit=MAX_LINE_BYTES),
                timeout=10.0,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.warning("Cannot connect to %s:%d: %s", self._host, self._port, exc)
            yield Fault(message=f"Cannot connect to {self._host}:{self._port}: {exc}")
            return

        self._writer = writer
        self._set_state(ConnectionState.CONNECTED)
        self._attempt = 0  # reset backoff on success
        yield ConnectionStatus(service=SERIAL_SERVICE, connected=True)

        try:
            while not self._shutdown.is_set():
                try:
                    raw = await reader.readline()
                except ValueError:
                    logger.warning("Discarding over-long line (> %d bytes)", MAX_LINE_BYTES)
                    continue
                if not raw:
                    logger.info("Serial bridge closed the connection")
                    break
                yield _decode(raw)
        except OSError as exc:
            logger.warning("Network error: %s", exc)
            yield Fault(message=f"Serial link error: {exc}")
        finally:
            self._writer = None
            writer.close()

        yield ConnectionStatus(service=SERIAL_SERVICE, connected=False)

    # ── backoff ─────────────────────────────────────────────────────

    async def _backoff(self) -> None:
        """Wait with exponential backoff + jitter before reconnecting."""
        self._set_state(ConnectionState.WAIT_BACKOFF)
        self._attempt += 1

        base = self._reconnect.initial_delay_ms / 1000.0
        multiplier = self._reconnect.backoff_multiplier
        max_delay = self._reconnect.max_delay_ms / 1000.0
        jitter_pct = self._reconnect.jitter_pct / 100.0

        delay = min(base * (multiplier ** (self._attempt - 1)), max_delay)
        jitter = delay * jitter_pct * (2 * random.random() - 1)
        delay = max(0.1, delay + jitter)

        logger.info("Reconnecting in %.1fs (attempt %d)", delay, self._attempt)

        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass  # backoff elapsed normally

    # ── helpers ─────────────────────────────────────────────────────

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        self._state = new
        logger.info("Connection state: %s → %s", old.value, new.value)


class FileLineSource:
    """Reads lines from a tty device node or a captured log file.

    With ``follow`` enabled the source waits for more data at end of file
    (like ``tail -f``); otherwise it stops after the last line.
    """

    def __init__(self, config: SourceConfig, poll_interval: float = 0.25) -> None:
        self._path = Path(config.path)
        self._follow = config.follow
        self._poll_interval = poll_interval
        self._shutdown = asyncio.Event()

    @property
    def writable(self) -> bool:
        """Commands can only be written back to a character device."""
        try:
            return stat.S_ISCHR(os.stat(self._path).st_mode)
        except OSError:
            return False

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def send_command(self, command: dict[str, Any]) -> None:
        data = _encode_command(command)

        def _write() -> None:
            with open(self._path, "wb", buffering=0) as fh:
                fh.write(data)

        await asyncio.to_thread(_write)
        logger.info("Sent command: %s", command)

    async def lines(self) -> AsyncIterator[SourceItem]:
        try:
            fh = await asyncio.to_thread(open, self._path, "rb")
        except OSError as exc:
            logger.warning("Cannot open %s: %s", self._path, exc)
            yield Fault(message=f"Cannot open {self._path}: {exc}")
            return

        yield ConnectionStatus(service=SERIAL_SERVICE, connected=True)
        pending = b""
        try:
            while not self._shutdown.is_set():
                raw = await asyncio.to_thread(fh.readline)
                if raw.endswith(b"\n"):
                    yield _decode(pending + raw)
                    pending = b""
                    continue
                pending += raw
                if not self._follow:
                    break
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass
            if pending and not self._follow:
                yield _decode(pending)
        except OSError as exc:
            logger.warning("Read error on %s: %s", self._path, exc)
            yield Fault(message=f"Read error on {self._path}: {exc}")
        finally:
            fh.close()

        yield ConnectionStatus(service=SERIAL_SERVICE, connected=False)
