"""Monitoring module - Prometheus metrics for secret synchronisation."""

from monitoring.recorders import Metrics, track_time
from monitoring.server import start_metrics_server

__all__ = [
    "Metrics",
    "track_time",
    "start_metrics_server",
]
