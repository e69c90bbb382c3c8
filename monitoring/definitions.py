"""Prometheus metric definitions."""

from prometheus_client import Counter, Gauge, Histogram

# ============================================================
# SYNC CYCLE METRICS
# ============================================================

SYNC_CYCLES = Counter(
    "secret_sync_cycles_total", "Sync cycles run", ["trigger", "result", "reason"]
)

SYNC_LATENCY = Histogram(
    "secret_sync_cycle_seconds",
    "Time to run one sync cycle",
    ["trigger"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

SYNC_SKIPPED = Counter(
    "secret_sync_skipped_total", "Triggers that skipped the sync cycle", ["reason"]
)

# ============================================================
# BACKEND METRICS
# ============================================================

BACKEND_CALLS = Counter(
    "secret_backend_calls_total",
    "Calls to secret backends",
    ["backend", "operation", "status"],
)

BACKEND_LATENCY = Histogram(
    "secret_backend_call_seconds",
    "Secret backend call latency",
    ["backend", "operation"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# ============================================================
# SCHEDULER METRICS
# ============================================================

SCHEDULED_ENTRIES = Gauge(
    "secret_scheduler_entries", "ExternalSecrets with an active refresh schedule"
)

SCHEDULED_FIRES = Counter(
    "secret_scheduler_fires_total", "Scheduled job firings"
)
