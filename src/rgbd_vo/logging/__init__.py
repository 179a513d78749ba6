"""Logging module for rgbd-vo."""

from rgbd_vo.logging.setup import configure_logging, get_logger
from rgbd_vo.logging.telemetry import OdometryTelemetry, TelemetryCollector

__all__ = [
    "configure_logging",
    "get_logger",
    "OdometryTelemetry",
    "TelemetryCollector",
]
