"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import orjson

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "config.schema.json"

SOURCE_MODES = ("simulate", "tcp", "file")


@dataclass
class ReconnectConfig:
    """Reconnection backoff parameters."""

    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: int = 2
    jitter_pct: int = 20


@dataclass
class SourceConfig:
    """Where telemetry lines come from.

    ``simulate`` runs the synthetic signal model, ``tcp`` reads a serial
    bridge socket (e.g. ser2net), ``file`` reads a device node or a
    captured log.
    """

    mode: str = "simulate"
    host: str = "127.0.0.1"
    port: int = 3333
    path: str = "/dev/ttyUSB0"
    follow: bool = True
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)


@dataclass
class SimulatorConfig:
    """Synthetic signal model settings."""

    tick_seconds: float = 1.0
    event_probability: float = 0.02
    seed: int | None = None


@dataclass
class AlarmConfig:
    """Alarm thresholds and policy."""

    trigger: float = 3.0
    clear: float = 3.0
    floor: float = 0.1
    episode_history: int = 50
    external_overrides: bool = True
    derive_from_samples: bool = True


@dataclass
class HistoryConfig:
    """Ring buffer capacities."""

    log_capacity: int = 1000
    sample_capacity: int = 86400


@dataclass
class HubConfig:
    """Fan-out settings."""

    replay_size: int = 100
    queue_size: int = 256


@dataclass
class ServerConfig:
    """WebSocket subscriber server."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class RotationConfig:
    """File rotation thresholds."""

    interval_seconds: int = 3600
    max_size_bytes: int = 52428800


@dataclass
class FlushConfig:
    """File flush settings."""

    interval_ms: int = 1000
    every_n_events: int = 50


@dataclass
class RecorderConfig:
    """NDJSON event recorder."""

    mode: str = "none"
    output_dir: str = "./recordings"
    file_prefix: str = "events"
    rotation: RotationConfig = field(default_factory=RotationConfig)
    flush: FlushConfig = field(default_factory=FlushConfig)


@dataclass
class FilterConfig:
    """Event-type filtering rules for the recorder."""

    keep_types: list[str] = field(default_factory=list)
    drop_types: list[str] = field(default_factory=lambda: ["raw_line"])


@dataclass
class LogFileConfig:
    """Optional log file output settings.

    When ``enabled`` is True the application writes operational logs to a
    rotating file in addition to stderr.
    """

    enabled: bool = False
    path: str = "./logs/seismic-bridge.log"
    max_size_bytes: int = 10485760   # 10 MB
    backup_count: int = 5


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: LogFileConfig = field(default_factory=LogFileConfig)


@dataclass
class AppConfig:
    """Top-level application configuration."""

    station_id: str = "station-01"
    source: SourceConfig = field(default_factory=SourceConfig)
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    alarm: AlarmConfig = field(default_factory=AlarmConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    hub: HubConfig = field(default_factory=HubConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    recorder: RecorderConfig = field(default_factory=RecorderConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no ``:-`` present

        # 1. CLI overrides
        if overrides and var_name in overrides:
            return overrides[var_name]
        # 2. Environment variables
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        # 3. Default
        if default is not None:
            return default

        raise ValueError(
            f"Required variable ${{{var_name}}} is not set in environment "
            f"or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def _fields(cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    """Keep only the scalar keys of *raw* that *cls* declares."""
    return {k: raw[k] for k in raw if k in cls.__dataclass_fields__}


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    source_raw = dict(raw.get("source", {}))
    reconnect_raw = source_raw.pop("reconnect", {})
    recorder_raw = dict(raw.get("recorder", {}))
    rotation_raw = recorder_raw.pop("rotation", {})
    flush_raw = recorder_raw.pop("flush", {})
    logging_raw = dict(raw.get("logging", {}))
    log_file_raw = logging_raw.pop("file", {})

    return AppConfig(
        station_id=raw.get("station_id", "station-01"),
        source=SourceConfig(
            reconnect=ReconnectConfig(**_fields(ReconnectConfig, reconnect_raw)),
            **_fields(SourceConfig, source_raw),
        ),
        simulator=SimulatorConfig(**_fields(SimulatorConfig, raw.get("simulator", {}))),
        alarm=AlarmConfig(**_fields(AlarmConfig, raw.get("alarm", {}))),
        history=HistoryConfig(**_fields(HistoryConfig, raw.get("history", {}))),
        hub=HubConfig(**_fields(HubConfig, raw.get("hub", {}))),
        server=ServerConfig(**_fields(ServerConfig, raw.get("server", {}))),
        recorder=RecorderConfig(
            rotation=RotationConfig(**_fields(RotationConfig, rotation_raw)),
            flush=FlushConfig(**_fields(FlushConfig, flush_raw)),
            **_fields(RecorderConfig, recorder_raw),
        ),
        filter=FilterConfig(**_fields(FilterConfig, raw.get("filter", {}))),
        logging=LoggingConfig(
            file=LogFileConfig(**_fields(LogFileConfig, log_file_raw)),
            **_fields(LoggingConfig, logging_raw),
        ),
    )


def load_config(
    path: str | Path,
    overrides: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to the JSON config file.
    overrides:
        CLI-supplied variable overrides.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``config/config.schema.json`` relative to the project root.

    Returns
    -------
    AppConfig
        Fully resolved and validated configuration.

    Raises
    ------
    ValueError
        If a required ``${VAR}`` cannot be resolved.
    jsonschema.ValidationError
        If the config fails schema validation.
    """
    raw_bytes = Path(path).read_bytes()
    raw: dict[str, Any] = orjson.loads(raw_bytes)

    interpolated = _walk_and_interpolate(raw, overrides=overrides)

    # --- schema validation ---
    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        jsonschema.validate(instance=interpolated, schema=schema)
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s — skipping validation", sp)

    return _dict_to_config(interpolated)
