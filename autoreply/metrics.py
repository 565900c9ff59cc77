"""
Prometheus metrics for the auto-responder.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Webhook outcome counter (result)
- Google Sheets operation counter (operation, outcome)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: replied, suppressed, malformed, error, invalid_signature
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook processing outcomes",
    labelnames=["result"]
)

# operation: ready, resolve_sheet, append, read_headers, ensure_headers, sender_exists
# outcome: ok, error
sheets_operations_total = Counter(
    "sheets_operations_total",
    "Google Sheets operations by outcome",
    labelnames=["operation", "outcome"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    """
    Record a webhook processing outcome.

    Args:
        result: Processing result - one of:
            - "replied": New sender, auto-reply dispatched
            - "suppressed": Known sender, no reply
            - "malformed": Payload missing required fields
            - "error": Unexpected failure, empty acknowledgment returned
            - "invalid_signature": Twilio signature validation failed
    """
    webhook_requests_total.labels(result=result).inc()


def record_sheets_operation(operation: str, ok: bool) -> None:
    sheets_operations_total.labels(
        operation=operation,
        outcome="ok" if ok else "error"
    ).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
