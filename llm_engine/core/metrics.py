"""Prometheus metrics for the application."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

UNMATCHED_PATH = "<unmatched>"

# --- Metrics ---

APP_INFO = Info("llm_engine", "LLM engine application info")
APP_INFO.info({"version": "0.1.0", "name": "llm_engine"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

LLM_REQUESTS = Counter(
    "llm_requests_total",
    "Completion and stream requests dispatched to a provider",
    ["provider", "mode", "status"],
)

LLM_TOKENS = Counter(
    "llm_recorded_tokens_total",
    "Tokens recorded against the per-user rate limiter",
    ["provider", "mode"],
)

LLM_RATE_LIMITED = Counter(
    "llm_rate_limited_total",
    "Requests rejected by the per-user rate limiter",
    ["provider"],
)

LLM_LATENCY = Histogram(
    "llm_completion_duration_seconds",
    "Non-streaming completion round-trip time",
    ["provider"],
    buckets=[0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120],
)


# --- Middleware ---


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        # Label by route template; the router sets scope["route"] once a route matched
        route = request.scope.get("route")
        path = getattr(route, "path", None) or UNMATCHED_PATH

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
