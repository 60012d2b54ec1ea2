"""Structured JSON request logging middleware for the vtguard API.

:class:`RequestLoggingMiddleware` records every HTTP request as one JSON log
entry at ``INFO`` level with:

* a **correlation ID**, taken from ``X-Correlation-ID`` (or
  ``X-Request-ID``) or generated as a UUID v4;
* the **caller identity** from ``request.state.user_id`` (set by
  :class:`~vtguard.api.middleware.identity.IdentityMiddleware`), ``null`` on
  public paths;
* method, path, status code and duration in milliseconds;
* the scan **verdict** on upload requests.

The correlation ID is stored on ``request.state.correlation_id`` and echoed
back in the ``X-Correlation-ID`` response header.

Register it after :class:`~vtguard.api.middleware.identity.IdentityMiddleware`
so that it is the outermost layer and sees the identity once it is set::

    app.add_middleware(IdentityMiddleware)
    app.add_middleware(RequestLoggingMiddleware)  # outermost — runs first

Log entry format::

    {
      "event": "http_request",
      "correlation_id": "550e8400-e29b-41d4-a716-446655440000",
      "user_id": "user_2abc",
      "method": "POST",
      "path": "/v1/uploads",
      "status_code": 200,
      "duration_ms": 8123.4,
      "verdict": "clean"
    }
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_CORRELATION_HEADERS: tuple[str, ...] = ("x-correlation-id", "x-request-id")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Per-request JSON logging with correlation IDs.

    Upload requests also carry the resolved ``verdict`` (read from
    ``request.state.scan_verdict``, set by the upload route).  Server errors
    are logged at ``WARNING``.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request_correlation_id(request)
        request.state.correlation_id = correlation_id

        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = round((time.monotonic() - started) * 1000, 2)

        entry = _log_entry(request, correlation_id, response.status_code, elapsed_ms)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, json.dumps(entry))

        response.headers["X-Correlation-ID"] = correlation_id
        return response


def request_correlation_id(request: Request) -> str:
    """Return the caller-supplied correlation ID, or a fresh UUID v4."""
    for header in _CORRELATION_HEADERS:
        value = request.headers.get(header, "").strip()
        if value:
            return value
    return str(uuid.uuid4())


def _log_entry(
    request: Request, correlation_id: str, status_code: int, elapsed_ms: float
) -> dict[str, object]:
    entry: dict[str, object] = {
        "event": "http_request",
        "correlation_id": correlation_id,
        "user_id": getattr(request.state, "user_id", None),
        "method": request.method,
        "path": request.url.path,
        "status_code": status_code,
        "duration_ms": elapsed_ms,
    }
    verdict = getattr(request.state, "scan_verdict", None)
    if verdict is not None:
        entry["verdict"] = verdict
    return entry
