from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from bookmark_rag.app.settings import settings

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
INDEX_OUTCOMES = Counter(
    "bookmark_index_total",
    "Bookmark indexing outcomes",
    ["status"],
)
INDEX_FAILURES = Counter(
    "bookmark_index_failures_total",
    "Bookmark indexing failures by root cause",
    ["cause"],
)
CHAT_OUTCOMES = Counter(
    "bookmark_chat_total",
    "Chat requests by outcome",
    ["outcome"],
)


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    if request.url.path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        # Route templates keep per-bookmark paths out of the label set.
        route = request.scope.get("route")
        path = getattr(route, "path", None) or request.url.path
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def record_index_outcome(status: str, cause: BaseException | None = None) -> None:
    if not settings.metrics_enabled:
        return
    INDEX_OUTCOMES.labels(status).inc()
    if cause is not None:
        INDEX_FAILURES.labels(type(cause).__name__).inc()


def record_chat_outcome(outcome: str) -> None:
    if settings.metrics_enabled:
        CHAT_OUTCOMES.labels(outcome).inc()


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
