"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total reservation attempts',
    ['result']  # success, capacity_exceeded, validation_error, error
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Reservation request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Capacity ledger metrics
ledger_retries = Counter(
    'ledger_retry_attempts_total',
    'Ledger conditional update retries due to version conflicts'
)

ledger_operations = Counter(
    'ledger_operations_total',
    'Capacity ledger operations',
    ['operation', 'result']  # reserve/release/reconcile, ok/rejected/noop/drift
)

# State machine metrics
booking_transitions = Counter(
    'booking_transitions_total',
    'Applied booking state transitions',
    ['event']
)

# Payment metrics
payment_verifications = Counter(
    'payment_verifications_total',
    'Payment verification outcomes',
    ['result']  # confirmed, already_processed, signature_error, failed
)

gateway_calls = Counter(
    'gateway_calls_total',
    'Payment gateway calls',
    ['operation', 'result']  # ok, retry, error
)

gateway_latency = Histogram(
    'gateway_call_latency_seconds',
    'Payment gateway call latency',
    ['operation'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Background sweep metrics
sweep_actions = Counter(
    'sweep_actions_total',
    'Bookings changed by the background sweep',
    ['action']  # expired, completed
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation(result: str):
    """Result: success, capacity_exceeded, validation_error, error"""
    reservation_attempts.labels(result=result).inc()


def record_ledger_operation(operation: str, result: str):
    ledger_operations.labels(operation=operation, result=result).inc()


def record_transition(event: str):
    booking_transitions.labels(event=event).inc()


def record_payment_verification(result: str):
    payment_verifications.labels(result=result).inc()


def record_gateway_call(operation: str, result: str):
    gateway_calls.labels(operation=operation, result=result).inc()


def record_sweep_action(action: str, count: int = 1):
    if count:
        sweep_actions.labels(action=action).inc(count)


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
