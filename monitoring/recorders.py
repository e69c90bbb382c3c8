"""Metrics recorder - stateless functions to record metrics."""

import time
from contextlib import contextmanager
from typing import Generator

from monitoring.definitions import (
    BACKEND_CALLS,
    BACKEND_LATENCY,
    SCHEDULED_ENTRIES,
    SCHEDULED_FIRES,
    SYNC_CYCLES,
    SYNC_LATENCY,
    SYNC_SKIPPED,
)


@contextmanager
def track_time() -> Generator[dict, None, None]:
    """
    Context manager to track execution time.

    Usage:
        with track_time() as t:
            do_work()
        print(t["duration"])  # seconds
    """
    result = {"duration": 0.0}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["duration"] = time.perf_counter() - start


class Metrics:
    """
    Stateless metrics recorder.

    Usage:
        from monitoring import Metrics, track_time

        with track_time() as t:
            value = client.get_secret(ref)
        Metrics.backend_call("vault", "get_secret", latency=t["duration"])
    """

    @staticmethod
    def sync_success(trigger: str, latency: float = None) -> None:
        """Record a successful sync cycle."""
        SYNC_CYCLES.labels(trigger=trigger, result="success", reason="Available").inc()
        if latency:
            SYNC_LATENCY.labels(trigger=trigger).observe(latency)

    @staticmethod
    def sync_error(trigger: str, reason: str, latency: float = None) -> None:
        """Record a failed sync cycle."""
        SYNC_CYCLES.labels(trigger=trigger, result="error", reason=reason).inc()
        if latency:
            SYNC_LATENCY.labels(trigger=trigger).observe(latency)

    @staticmethod
    def sync_skipped(reason: str) -> None:
        SYNC_SKIPPED.labels(reason=reason).inc()

    @staticmethod
    def backend_call(
        backend: str, operation: str, latency: float = None, success: bool = True
    ) -> None:
        """Record one backend call."""
        status = "success" if success else "error"
        BACKEND_CALLS.labels(backend=backend, operation=operation, status=status).inc()
        if latency:
            BACKEND_LATENCY.labels(backend=backend, operation=operation).observe(latency)

    @staticmethod
    def scheduled_entries(count: int) -> None:
        SCHEDULED_ENTRIES.set(count)

    @staticmethod
    def scheduled_fire() -> None:
        SCHEDULED_FIRES.inc()
