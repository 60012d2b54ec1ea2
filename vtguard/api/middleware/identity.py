"""Caller-identity middleware for the vtguard API.

Token validation is delegated to the upstream identity provider (an API
gateway or auth proxy).  The gateway forwards the authenticated user ID in
the ``X-User-Id`` header; this middleware attaches it to
``request.state.user_id`` for downstream handlers.

HTTP responses on failure:

* ``401 Unauthorized`` – no (or an empty) ``X-User-Id`` header on a
  protected path.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

#: Header carrying the identity established by the upstream provider.
USER_ID_HEADER = "X-User-Id"

# Paths that bypass identity checks (health / docs endpoints)
_UNAUTHENTICATED_PATHS: frozenset[str] = frozenset({"/healthz", "/v1/docs", "/v1/openapi.json"})


def _json_401(detail: str) -> JSONResponse:
    return JSONResponse({"detail": detail}, status_code=401)


class IdentityMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that requires a caller identity.

    Attaches the user ID to ``request.state.user_id`` on success.  Paths
    listed in :data:`_UNAUTHENTICATED_PATHS` bypass the check entirely.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:  # type: ignore[override]
        if request.url.path in _UNAUTHENTICATED_PATHS:
            return await call_next(request)

        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        if not user_id:
            return _json_401("User authentication required")

        request.state.user_id = user_id
        logger.debug("Caller identified user_id=%s path=%s", user_id, request.url.path)
        return await call_next(request)
