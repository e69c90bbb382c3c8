"""Prometheus HTTP server."""

from prometheus_client import start_http_server

from core.utils.logging import get_logger

logger = get_logger(__name__)

_started = False


def start_metrics_server(port: int = 8080, addr: str = "0.0.0.0") -> bool:
    """
    Start Prometheus HTTP server (idempotent).

    A port of 0 disables the server.

    Returns:
        True if a server is running after the call

    Usage:
        from monitoring import start_metrics_server

        start_metrics_server(port=8080)
        # Metrics available at http://localhost:8080/metrics
    """
    global _started
    if port == 0:
        logger.info("Metrics server disabled")
        return _started
    if not _started:
        start_http_server(port, addr=addr)
        _started = True
        logger.info(f"Metrics server started on {addr}:{port}/metrics")
    return _started
