"""Prometheus exporter for AI-on-the-edge-device meter digitizers."""

__version__ = "0.1.0"
