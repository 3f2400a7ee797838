"""
Prometheus Metrics Module

Request metrics plus counters for the analytics pipeline. Metrics are
exposed at /metrics for Prometheus scraping.
"""

import time
from collections.abc import Callable

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# =============================================================================
# HTTP Request Metrics
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "projectshelf_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "projectshelf_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# =============================================================================
# Engagement Metrics
# =============================================================================

ENGAGEMENT_EVENTS_TOTAL = Counter(
    "projectshelf_engagement_events_total",
    "Engagement recording outcomes",
    ["kind", "outcome"],  # recorded, self_view
)

AGGREGATE_INCREMENT_FAILURES_TOTAL = Counter(
    "projectshelf_aggregate_increment_failures_total",
    "Daily aggregate increments that failed after the event was stored",
    ["kind"],
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect request count and duration by method and normalized endpoint."""

    EXCLUDED_PATHS = {"/metrics", "/health", "/favicon.ico"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.EXCLUDED_PATHS:
            return await call_next(request)

        method = request.method
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            status_code = 500
            raise
        finally:
            duration = time.perf_counter() - start_time
            endpoint = self._endpoint_label(request)
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, endpoint=endpoint).observe(duration)
            HTTP_REQUESTS_TOTAL.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()

        return response

    @staticmethod
    def _endpoint_label(request: Request) -> str:
        """Route template when one matched, so ids never become label values."""
        route = request.scope.get("route")
        if route is not None and hasattr(route, "path_format"):
            return route.path_format
        return "unmatched"


def record_engagement(kind: str, outcome: str) -> None:
    ENGAGEMENT_EVENTS_TOTAL.labels(kind=kind, outcome=outcome).inc()


def record_aggregate_failure(kind: str) -> None:
    AGGREGATE_INCREMENT_FAILURES_TOTAL.labels(kind=kind).inc()
