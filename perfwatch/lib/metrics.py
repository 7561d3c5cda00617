"""Prometheus metrics about perfwatch itself.

They complement the persisted samples: the request histogram and the active
users gauge are scraped from ``/metrics``, and the counters show samples the
store dropped and samples retention deleted.
"""

from prometheus_client import Counter, Gauge, Histogram

LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0)

request_duration_seconds = Histogram(
    'request_duration_seconds',
    'Duration of monitored calls in seconds',
    ['endpoint', 'method', 'status'],
    buckets=LATENCY_BUCKETS,
)

sample_write_failures_total = Counter(
    'perfwatch_sample_write_failures_total',
    'Performance samples discarded because they could not be persisted',
    ['reason'],
)

cleanup_deleted_total = Counter(
    'perfwatch_cleanup_deleted_total',
    'Performance samples deleted by retention cleanup',
)

active_users_gauge = Gauge(
    'active_users',
    'Distinct users seen in the realtime dashboard window',
)


def record_request_duration(endpoint: str, method: str, status: int, duration_seconds: float):
    """Observe one finished call.

    Args:
        endpoint: Request path or procedure name
        method: HTTP verb or RPC type
        status: Recorded status code
        duration_seconds: Wall-clock duration
    """
    request_duration_seconds.labels(endpoint, method, str(status)).observe(duration_seconds)


def record_sample_write_failure(reason: str):
    """Count a dropped sample; ``reason`` is 'validation' or 'database'."""
    sample_write_failures_total.labels(reason=reason).inc()


def record_cleanup(deleted_count: int):
    cleanup_deleted_total.inc(deleted_count)


def update_active_users_count(count: int):
    active_users_gauge.set(count)
