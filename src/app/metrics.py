from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from src.app.settings import settings

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
CLASSIFICATIONS = Counter(
    "arbiter_classifications_total",
    "Classification calls by mode and outcome",
    ["mode", "outcome"],
)
ANSWERS = Counter(
    "arbiter_answers_total",
    "Answer calls by outcome",
    ["outcome"],
)
ORACLE_CALLS = Counter(
    "arbiter_oracle_calls_total",
    "Token-counting oracle calls made while fitting context",
)


def record_classification(mode: str, ok: bool) -> None:
    if settings.metrics_enabled:
        CLASSIFICATIONS.labels(mode, "ok" if ok else "error").inc()


def record_answer(ok: bool, oracle_calls: int = 0) -> None:
    if not settings.metrics_enabled:
        return
    ANSWERS.labels("ok" if ok else "error").inc()
    if oracle_calls:
        ORACLE_CALLS.inc(oracle_calls)


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    path = request.url.path
    if path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
