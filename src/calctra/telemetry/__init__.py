"""Operational telemetry — structured logging setup."""

from calctra.telemetry.logging import setup_logging

__all__ = ["setup_logging"]
