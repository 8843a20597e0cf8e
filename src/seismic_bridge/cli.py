"""Click CLI for seismic-bridge.

Entry point registered in ``pyproject.toml`` as ``seismic-bridge``.

Subcommands::

    seismic-bridge                       # run the station (default: simulation)
    seismic-bridge --mode tcp --host …   # read a serial bridge over TCP
    seismic-bridge classify CAPTURE.log  # classify a captured log to NDJSON
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click
import orjson

from seismic_bridge import __version__
from seismic_bridge.classifier import SampleLatch, classify
from seismic_bridge.codec import encode_event
from seismic_bridge.config import SOURCE_MODES, AppConfig, LogFileConfig, load_config
from seismic_bridge.filter import EventFilter
from seismic_bridge.output import FileSink, Recorder, StdoutSink
from seismic_bridge.server import SubscriberServer
from seismic_bridge.sources import FileLineSource, TcpLineSource
from seismic_bridge.station import Station

logger = logging.getLogger("seismic_bridge")

DEFAULT_CONFIG = "/etc/seismic-bridge/config.json"
DRY_RUN_SAMPLES = 5


# ── structured JSON log formatter ───────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON to stderr."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(level: str, log_file_config: Optional[LogFileConfig] = None) -> None:
    """Configure the root logger with JSON output on stderr + optional rotating file."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_JsonFormatter())
    root.addHandler(stderr_handler)

    if log_file_config and log_file_config.enabled:
        from logging.handlers import RotatingFileHandler

        Path(log_file_config.path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_file_config.path,
            maxBytes=log_file_config.max_size_bytes,
            backupCount=log_file_config.backup_count,
        )
        file_handler.setFormatter(_JsonFormatter())
        root.addHandler(file_handler)


def _resolve_config(config_path: Optional[str]) -> AppConfig:
    """Load the config file, or fall back to defaults when none exists."""
    cfg_path = config_path or os.environ.get("SEISMIC_CONFIG", DEFAULT_CONFIG)
    if config_path is None and not Path(cfg_path).exists():
        return AppConfig()
    return load_config(cfg_path)


# ── main CLI group ──────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.option("-m", "--mode", type=click.Choice(SOURCE_MODES), default=None,
              help="Telemetry source (default: simulate).")
@click.option("--host", default=None, help="Serial bridge host (tcp mode).")
@click.option("--port", type=int, default=None, help="Serial bridge port (tcp mode).")
@click.option("--path", "device_path", default=None,
              help="Device node or capture file (file mode).")
@click.option("-r", "--record", "record_mode", type=click.Choice(["none", "stdout", "file"]),
              default=None, help="Record events as NDJSON.")
@click.option("-c", "--config", "config_path", default=None, help="Config file path.")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--no-server", is_flag=True, help="Do not start the WebSocket server.")
@click.option("--dry-run", is_flag=True, help="Process a few samples then exit.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    mode: Optional[str],
    host: Optional[str],
    port: Optional[int],
    device_path: Optional[str],
    record_mode: Optional[str],
    config_path: Optional[str],
    log_level: Optional[str],
    no_server: bool,
    dry_run: bool,
    validate_only: bool,
) -> None:
    """seismic-bridge — accelerometer telemetry, earthquake alarm and live event feed."""
    if ctx.invoked_subcommand is not None:
        return  # defer to subcommand

    try:
        cfg = _resolve_config(config_path)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    # --- resolve runtime overrides ---
    effective_level = log_level or os.environ.get("SEISMIC_LOG_LEVEL") or cfg.logging.level
    cfg.source.mode = mode or os.environ.get("SEISMIC_MODE") or cfg.source.mode
    if cfg.source.mode not in SOURCE_MODES:
        click.echo(f"Config error: unknown source mode {cfg.source.mode!r}", err=True)
        raise SystemExit(1)
    if host:
        cfg.source.host = host
    if port:
        cfg.source.port = port
    if device_path:
        cfg.source.path = device_path
    if record_mode:
        cfg.recorder.mode = record_mode
    if no_server:
        cfg.server.enabled = False

    _setup_logging(effective_level, cfg.logging.file)

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    logger.info(
        "Starting seismic-bridge %s (station=%s, source=%s)",
        __version__,
        cfg.station_id,
        cfg.source.mode,
    )

    asyncio.run(_run_pipeline(cfg, dry_run))


# ── async pipeline ──────────────────────────────────────────────────


async def _run_pipeline(cfg: AppConfig, dry_run: bool) -> None:
    """Run one producer plus the server and recorder until shutdown."""
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()
    station = Station(cfg)

    # A TCP bridge takes commands once (re)connected; send_command raises
    # ConnectionError in between, which the station reports as a Fault.
    source = None
    if cfg.source.mode == "tcp":
        source = TcpLineSource(cfg.source)
        station.attach_transport(source.send_command)
    elif cfg.source.mode == "file":
        source = FileLineSource(cfg.source)
        if source.writable:
            station.attach_transport(source.send_command)

    # --- signal handling ---
    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        shutdown.set()
        if source is not None:
            source.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    services: list[asyncio.Task] = []
    if cfg.server.enabled and not dry_run:
        services.append(asyncio.create_task(SubscriberServer(station, cfg.server).serve(shutdown)))
    if cfg.recorder.mode != "none":
        sink = (
            StdoutSink()
            if cfg.recorder.mode == "stdout"
            else FileSink.from_config(cfg.recorder, cfg.station_id)
        )
        recorder = Recorder(station.hub, sink, EventFilter(cfg.filter))
        services.append(asyncio.create_task(recorder.run()))
    await asyncio.sleep(0)  # let subscribers attach before the first event

    try:
        if source is None:
            await _produce_simulated(station, shutdown, dry_run)
        else:
            await _produce_from_source(station, source, dry_run)
    finally:
        shutdown.set()
        station.detach_transport()
        station.hub.close()
        await asyncio.gather(*services, return_exceptions=True)
        snap = station.snapshot()
        logger.info(
            "Station shut down (samples=%d, peak=%.2f, episodes=%d)",
            snap["samples"],
            snap["peak"],
            len(station.alarm.episodes()),
        )


async def _produce_simulated(station: Station, shutdown: asyncio.Event, dry_run: bool) -> None:
    period = station.simulator.tick_seconds
    ticks = 0
    while not shutdown.is_set():
        station.ingest_tick()
        ticks += 1
        if dry_run and ticks >= DRY_RUN_SAMPLES:
            logger.info("Dry run complete — generated %d samples", ticks)
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(shutdown.wait(), timeout=period)


async def _produce_from_source(station: Station, source, dry_run: bool) -> None:
    before = len(station.samples)
    async for item in source.lines():
        if isinstance(item, str):
            station.ingest_line(item)
        else:
            station.ingest_event(item)
        if dry_run and len(station.samples) - before >= DRY_RUN_SAMPLES:
            logger.info("Dry run complete — received %d samples", DRY_RUN_SAMPLES)
            source.request_shutdown()
            break


# ── offline classification ──────────────────────────────────────────


@main.command("classify")
@click.argument("capture", type=click.File("r", encoding="utf-8", errors="replace"))
@click.option("--raw/--no-raw", default=False, help="Also emit raw_line records.")
def classify_capture(capture, raw: bool) -> None:
    """Classify a captured serial log and print NDJSON events to stdout."""
    from seismic_bridge.models import RawLine

    latch = SampleLatch()
    sink = StdoutSink()
    count = 0
    try:
        for line in capture:
            now = datetime.now(timezone.utc)
            text = line.rstrip("\r\n")
            events = classify(text, now, latch)
            if raw:
                events.insert(0, RawLine(timestamp=now, text=text))
            for event in events:
                sink.write(encode_event(event))
                count += 1
    except BrokenPipeError:
        raise SystemExit(0)
    click.echo(f"{count} events", err=True)
