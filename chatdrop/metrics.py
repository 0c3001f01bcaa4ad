"""
Prometheus metrics for the chat drop message store.

This module provides:
- HTTP request counter (method, path, status) and latency histogram
- Repository operation counter (operation, outcome) and latency histogram
- Ingest outcome counter (result)

Metrics are stored in-memory using prometheus-client.
"""

import functools
import time

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# outcome: ok, error
repository_operations_total = Counter(
    "repository_operations_total",
    "Total repository operations",
    labelnames=["operation", "outcome"]
)

repository_operation_latency_seconds = Histogram(
    "repository_operation_latency_seconds",
    "Repository operation latency in seconds",
    labelnames=["operation"]
)

# result: created, duplicate
ingest_outcomes_total = Counter(
    "ingest_outcomes_total",
    "Total message ingest outcomes",
    labelnames=["result"]
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


def record_ingest_outcome(result: str) -> None:
    """
    Record the outcome of ingesting a message.

    Args:
        result: "created" for a newly stored message, "duplicate" otherwise
    """
    ingest_outcomes_total.labels(result=result).inc()


def instrument(operation: str):
    """
    Decorator counting and timing a repository operation.

    Any exception counts as an "error" outcome and is re-raised unchanged.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            outcome = "ok"
            try:
                return func(*args, **kwargs)
            except Exception:
                outcome = "error"
                raise
            finally:
                repository_operations_total.labels(operation=operation, outcome=outcome).inc()
                repository_operation_latency_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start_time
                )
        return wrapper
    return decorator


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
