"""Telemetry collection, escalation, billing and reporting for third-party integrations."""

__version__ = "0.1.0"
