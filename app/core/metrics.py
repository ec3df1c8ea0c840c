"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Hold admission metrics
hold_requests = Counter(
    'hold_requests_total',
    'Total hold requests',
    ['result']  # admitted, converted, duplicate, capacity, invalid
)

hold_latency = Histogram(
    'hold_request_latency_seconds',
    'Hold request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

admission_retries = Counter(
    'admission_retries_total',
    'Admission attempts retried after a storage conflict'
)

# Lifecycle metrics
reservation_transitions = Counter(
    'reservation_transitions_total',
    'Reservation status transitions applied',
    ['to_status']
)

invalid_transitions = Counter(
    'invalid_transitions_total',
    'Refused lifecycle transitions'
)

# Sweeper metrics
sweep_runs = Counter(
    'sweep_runs_total',
    'Expiry sweeper runs',
    ['result']  # completed, skipped, failed
)

sweep_transitions = Counter(
    'sweep_transitions_total',
    'Transitions applied by the expiry sweeper',
    ['kind']  # expired, activated, failed
)

sweep_duration = Histogram(
    'sweep_duration_seconds',
    'Expiry sweeper run duration',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0]
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_hold_request(result: str):
    """Record hold request outcome. Result: admitted, converted, duplicate, capacity, invalid"""
    hold_requests.labels(result=result).inc()


def record_transition(to_status: str):
    reservation_transitions.labels(to_status=to_status).inc()


def record_sweep(result: str, expired: int = 0, activated: int = 0, failed: int = 0):
    sweep_runs.labels(result=result).inc()
    if expired:
        sweep_transitions.labels(kind="expired").inc(expired)
    if activated:
        sweep_transitions.labels(kind="activated").inc(activated)
    if failed:
        sweep_transitions.labels(kind="failed").inc(failed)
