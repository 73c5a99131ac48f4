"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Driver assignment metrics
driver_assignments = Counter(
    'driver_assignments_total',
    'Driver assignment attempts',
    ['result']  # assigned, unavailable, completed, invalid_state
)

inconsistent_history = Counter(
    'driver_inconsistent_history_total',
    'Assignment completions with no open history entry (self-healed)'
)

# Payment metrics
payment_events = Counter(
    'payment_events_total',
    'Payment events applied to bookings',
    ['source', 'outcome']  # verify/webhook/lookup, confirmed/duplicate/...
)

payment_conflicts = Counter(
    'payment_conflicts_total',
    'Payments completed for bookings that were already cancelled'
)

gateway_calls = Counter(
    'gateway_calls_total',
    'Outbound payment gateway calls',
    ['operation', 'result']  # initiate/verify/lookup, ok/rejected/unavailable
)

# Booking lifecycle metrics
booking_transitions = Counter(
    'booking_transitions_total',
    'Booking status transitions',
    ['from_status', 'to_status', 'actor']
)

# HTTP
http_requests = Counter(
    'http_requests_total',
    'HTTP requests by route template',
    ['method', 'route', 'status_code']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency',
    ['method', 'route'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

# Notifications
emails_sent = Counter(
    'emails_sent_total',
    'Outbound emails',
    ['result']  # sent, failed, skipped
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_driver_assignment(result: str):
    """Result: assigned, unavailable, completed, invalid_state"""
    driver_assignments.labels(result=result).inc()


def record_payment_event(source: str, outcome: str):
    payment_events.labels(source=source, outcome=outcome).inc()


def record_gateway_call(operation: str, result: str):
    gateway_calls.labels(operation=operation, result=result).inc()


def record_booking_transition(from_status: str, to_status: str, actor: str):
    booking_transitions.labels(
        from_status=from_status, to_status=to_status, actor=actor
    ).inc()


def record_email(result: str):
    emails_sent.labels(result=result).inc()


def record_http_request(method: str, route: str, status_code: int, duration_seconds: float):
    http_requests.labels(method=method, route=route, status_code=str(status_code)).inc()
    http_request_duration.labels(method=method, route=route).observe(duration_seconds)
