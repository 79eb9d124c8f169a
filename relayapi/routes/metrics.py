"""
Prometheus metrics endpoint.

Exposes relay metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Business Metrics - Deliveries
# ============================================

delivery_quotes = Counter(
    'delivery_quotes_total',
    'Delivery quote requests',
    ['outcome']
)

deliveries_accepted = Counter(
    'deliveries_accepted_total',
    'Quote accept requests',
    ['outcome']
)

# ============================================
# Business Metrics - Order Calls
# ============================================

order_calls = Counter(
    'order_calls_total',
    'Order calls placed',
    ['outcome']
)

ivr_responses = Counter(
    'ivr_responses_total',
    'IVR webhook turns by resulting state',
    ['state']
)

# ============================================
# Upstream Metrics
# ============================================

upstream_errors = Counter(
    'upstream_errors_total',
    'Errors returned by the dispatch partner or telephony provider',
    ['provider']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_quote(outcome: str):
    """Record a quote request (success or error)."""
    delivery_quotes.labels(outcome=outcome).inc()


def track_accept(outcome: str):
    """Record a quote accept."""
    deliveries_accepted.labels(outcome=outcome).inc()


def track_order_call(outcome: str):
    """Record an order call placement."""
    order_calls.labels(outcome=outcome).inc()


def track_ivr_turn(state: str):
    """Record the state an IVR turn ended in."""
    ivr_responses.labels(state=state).inc()


def track_upstream_error(provider: str):
    """Record an upstream failure."""
    upstream_errors.labels(provider=provider).inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
