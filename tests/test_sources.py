"""Tests for the sources module."""

import asyncio
from pathlib import Path

import orjson
import pytest

from seismic_bridge.config import ReconnectConfig, SourceConfig
from seismic_bridge.models import ConnectionStatus, Fault
from seismic_bridge.sources import ConnectionState, FileLineSource, TcpLineSource


async def _collect(source, limit: int = 100) -> list:
    items = []
    async for item in source.lines():
        items.append(item)
        if len(items) >= limit:
            source.request_shutdown()
    return items


async def _until(predicate) -> None:
    while not predicate():
        await asyncio.sleep(0.01)


class TestFileLineSource:
    """Tests for :class:`FileLineSource`."""

    def test_replays_capture_file(self, tmp_path: Path) -> None:
        capture = tmp_path / "capture.log"
        capture.write_bytes(b"Acceleration X: 0.1\r\n---\nAlarm ON")
        source = FileLineSource(SourceConfig(mode="file", path=str(capture), follow=False))

        items = asyncio.run(_collect(source))

        assert items[0] == ConnectionStatus(service="serial", connected=True)
        assert items[1:4] == ["Acceleration X: 0.1", "---", "Alarm ON"]
        assert items[-1] == ConnectionStatus(service="serial", connected=False)
        assert source.writable is False

    def test_missing_file_yields_fault(self, tmp_path: Path) -> None:
        source = FileLineSource(SourceConfig(mode="file", path=str(tmp_path / "nope"), follow=False))
        items = asyncio.run(_collect(source))
        assert len(items) == 1
        assert isinstance(items[0], Fault)


class TestTcpLineSource:
    """Tests for :class:`TcpLineSource`."""

    def test_send_command_requires_connection(self) -> None:
        source = TcpLineSource(SourceConfig(mode="tcp"))
        with pytest.raises(ConnectionError):
            asyncio.run(source.send_command({"earthquake": "on"}))

    def test_reads_lines_and_writes_commands(self) -> None:
        """Lines stream in, a command goes back out, shutdown stops cleanly."""
        received: list[bytes] = []

        async def scenario() -> list:
            async def bridge(reader, writer) -> None:
                writer.write(b"Acceleration X: 1.0\n---\n")
                await writer.drain()
                received.append(await reader.readline())
                writer.close()

            server = await asyncio.start_server(bridge, "127.0.0.1", 0)
            port = server.sockets[0].getsockname()[1]
            source = TcpLineSource(SourceConfig(mode="tcp", host="127.0.0.1", port=port))
            items = []
            async with server:
                async for item in source.lines():
                    items.append(item)
                    if item == "---":
                        assert source.writable
                        await source.send_command({"earthquake": "on"})
                        source.request_shutdown()
                await asyncio.wait_for(_until(lambda: received), timeout=2.0)
            assert source.state is ConnectionState.SHUTTING_DOWN
            assert source.writable is False
            return items

        items = asyncio.run(scenario())

        assert items[0] == ConnectionStatus(service="serial", connected=True)
        assert items[1:3] == ["Acceleration X: 1.0", "---"]
        assert items[-1] == ConnectionStatus(service="serial", connected=False)
        assert orjson.loads(received[0]) == {"earthquake": "on"}

    def test_unreachable_bridge_reports_fault(self) -> None:
        """A refused connection yields a Fault, then backs off until shutdown."""
        config = SourceConfig(
            mode="tcp",
            host="127.0.0.1",
            port=1,
            reconnect=ReconnectConfig(initial_delay_ms=10, max_delay_ms=10, jitter_pct=0),
        )
        source = TcpLineSource(config)
        items = asyncio.run(_collect(source, limit=1))
        assert isinstance(items[0], Fault)


def test_tcp_source_not_writable_before_connect() -> None:
    assert TcpLineSource(SourceConfig(mode="tcp")).writable is False
