"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


verification_requests_total = Counter(
    "verification_requests_total",
    "Total purchase verification requests",
    ["service", "rail"],
)
verification_outcomes_total = Counter(
    "verification_outcomes_total",
    "Verifier outcomes by rail, result and reason code",
    ["rail", "result", "reason"],
)
purchases_completed_total = Counter(
    "purchases_completed_total",
    "Purchases moved to completed",
    ["rail", "path"],
)
purchases_failed_total = Counter(
    "purchases_failed_total",
    "Purchases moved to failed",
    ["rail", "path"],
)
completion_conflicts_total = Counter(
    "completion_conflicts_total",
    "Guarded completions that found the purchase already finalized",
    ["path"],
)
rail_request_duration_seconds = Histogram(
    "rail_request_duration_seconds",
    "Upstream rail call duration seconds",
    ["rail", "method"],
)
rail_errors_total = Counter(
    "rail_errors_total",
    "Upstream rail infrastructure errors",
    ["rail", "method", "error_type"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
finalizer_cycle_seconds = Histogram(
    "finalizer_cycle_seconds",
    "Duration of one reconciliation cycle",
    ["service"],
)
finalizer_batch_size = Gauge(
    "finalizer_batch_size",
    "Pending purchases scanned in the last reconciliation cycle",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
