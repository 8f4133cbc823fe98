"""Request telemetry, alerting and self-optimization for a single process."""

__version__ = "0.1.0"
