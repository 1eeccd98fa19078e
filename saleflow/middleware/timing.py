"""
Request timing and correlation.

Every response carries ``X-Request-ID`` (echoed from the caller when it
looks sane, generated otherwise) and ``X-Request-Duration-Ms``.  One access
line is logged per request, tagged with the caller and the operation from
the URL; requests slower than SLOW_REQUEST_MS log at WARNING.
"""

import logging
import re
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

# Probe endpoints hit by load balancers; headers only, no access line
_QUIET_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready"})

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _incoming_request_id() -> str:
    candidate = request.headers.get("X-Request-ID", "").strip()
    if _REQUEST_ID_RE.match(candidate):
        return candidate
    return uuid.uuid4().hex[:12]


def _access_level(status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > current_app.config.get("SLOW_REQUEST_MS", 1000):
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Register the before/after request hooks."""

    @app.before_request
    def _begin():
        g.request_started = time.perf_counter()
        g.request_id = _incoming_request_id()

    @app.after_request
    def _finish(response):
        started = g.get("request_started")
        if started is None:
            return response

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path not in _QUIET_PATHS:
            logger.log(
                _access_level(response.status_code, duration_ms),
                "%s %s -> %d", request.method, request.path, response.status_code,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 1),
                    "remote_addr": request.remote_addr,
                    "operation_id": (request.view_args or {}).get("operation_id"),
                },
            )
        return response
