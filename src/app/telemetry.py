from __future__ import annotations

"""Caller-facing outcome envelope with timing and correlation ids."""

import time
import uuid
from typing import Any

from src.arbiter.errors import ArbiterError, ErrorKind

_STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.DIMENSION_MISMATCH: 422,
    ErrorKind.NO_VALID_VERDICT: 422,
    ErrorKind.EMPTY_UPSTREAM_RESULT: 502,
    ErrorKind.ORACLE_UNAVAILABLE: 502,
    ErrorKind.EMPTY_SYNTHESIS: 502,
    ErrorKind.UPSTREAM_ERROR: 502,
}


def build_correlation_id() -> str:
    return str(uuid.uuid4())


def error_status(exc: Exception) -> int:
    """Map an exception to an HTTP-like status code.

    Upstream failures report the provider's own error status when it answered
    with one (4xx or 5xx), otherwise 502.
    """
    if isinstance(exc, ArbiterError):
        if exc.kind is ErrorKind.UPSTREAM_ERROR:
            status = getattr(exc, "status_code", None)
            if isinstance(status, int) and 400 <= status <= 599:
                return status
            return 502
        return _STATUS_BY_KIND.get(exc.kind, 500)
    return 500


def error_kind(exc: Exception) -> str:
    if isinstance(exc, ArbiterError):
        return exc.kind.value
    return ErrorKind.UPSTREAM_ERROR.value


def telemetry_envelope(
    started_at: float,
    correlation_id: str,
    ok: bool,
    status: int,
    message: str | None,
    kind: str | None = None,
) -> dict[str, Any]:
    """Envelope merged into every classify/answer outcome.

    ``started_at`` comes from ``time.monotonic()``.
    """
    telemetry: dict[str, Any] = {
        "http_status": int(status),
        "message": message or ("OK" if ok else "ERROR"),
        "duration_ms": int((time.monotonic() - started_at) * 1000),
        "correlation_id": correlation_id,
    }
    if kind:
        telemetry["error_kind"] = kind
    return {"ok": bool(ok), "telemetry": telemetry}


def failure_envelope(started_at: float, correlation_id: str, exc: Exception) -> dict[str, Any]:
    return telemetry_envelope(
        started_at,
        correlation_id,
        False,
        error_status(exc),
        str(exc) or type(exc).__name__,
        error_kind(exc),
    )
