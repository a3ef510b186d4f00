"""Renovate Analytics -- telemetry sanitization, aggregation and storage for automation runs."""

__version__ = "0.1.0"
