"""seismic-bridge: accelerometer telemetry normalization, earthquake alarm and live event fan-out."""

__version__ = "0.3.0"
