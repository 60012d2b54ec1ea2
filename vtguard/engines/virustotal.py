"""VirusTotal API v3 client.

Implements :class:`~vtguard.engines.base.ScanServiceClient` over
:mod:`httpx`.  Three endpoints are used:

``GET /files/{sha256}``
    File metadata; may embed ``last_analysis_stats`` and/or
    ``last_analysis_id``.  404 when the content is unknown.
``POST /files``
    Multipart upload; answers ``{"data": {"id": "<analysis id>"}}``.
``GET /analyses/{id}``
    Analysis state; 400 with error code ``NotAvailableYet`` while the
    analysis object has not been created.

Status mapping
--------------
=====  ==========================================================
404    :class:`~vtguard.core.errors.NotFoundError`
409    :class:`~vtguard.core.errors.ConflictError`
429    :class:`~vtguard.core.errors.RateLimitedError`
400    :class:`~vtguard.core.errors.BadRequestError` (or
       :class:`~vtguard.core.errors.AnalysisPendingError` for
       ``NotAvailableYet`` on the analyses endpoint)
5xx    :class:`~vtguard.core.errors.TransientError`
other  :class:`~vtguard.core.errors.FatalResponseError`
=====  ==========================================================

Network errors and timeouts raise :class:`~vtguard.core.errors.TransientError`.
The client never retries; retry policy lives in the submitter and poller.

Usage::

    from vtguard.engines.virustotal import VirusTotalClient

    client = VirusTotalClient(api_key=settings.vt_api_key)
    record = await client.get_file(sha256)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from prometheus_client import Counter

from vtguard.core.errors import (
    AnalysisPendingError,
    BadRequestError,
    ConflictError,
    FatalResponseError,
    NotFoundError,
    RateLimitedError,
    ScanServiceError,
    TransientError,
)
from vtguard.core.verdict import AnalysisReport, DetectionStats, FileRecord
from vtguard.engines.base import ScanServiceClient

logger = logging.getLogger(__name__)

#: Incremented once per HTTP request to the scanning service.
#: Labels: ``endpoint`` ("files" | "upload" | "analyses") and ``outcome``
#: ("ok" | "not_found" | "conflict" | "bad_request" | "rate_limited" |
#: "transient" | "fatal").
vt_requests_total = Counter(
    "vt_requests_total",
    "Total number of requests sent to the VirusTotal API",
    ["endpoint", "outcome"],
)

DEFAULT_BASE_URL = "https://www.virustotal.com/api/v3"

_DEFAULT_TIMEOUT = 30.0

#: Error code VirusTotal returns while an analysis object does not exist yet.
_NOT_AVAILABLE_YET = "NotAvailableYet"

_OUTCOME_BY_ERROR: dict[type[ScanServiceError], str] = {
    NotFoundError: "not_found",
    ConflictError: "conflict",
    BadRequestError: "bad_request",
    RateLimitedError: "rate_limited",
    TransientError: "transient",
    FatalResponseError: "fatal",
}


class VirusTotalClient(ScanServiceClient):
    """Async VirusTotal v3 client.

    Args:
        api_key: API key sent as the ``x-apikey`` header.
        base_url: API root.  Defaults to the public v3 endpoint.
        timeout: Per-request timeout in seconds.
        http_client: Optional shared :class:`httpx.AsyncClient`.  When
            provided the client is reused across requests (recommended in
            production for connection pooling).  When ``None`` a new client
            is created for each request.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = _DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client

    # ------------------------------------------------------------------
    # ScanServiceClient contract
    # ------------------------------------------------------------------

    async def get_file(self, fingerprint: str) -> FileRecord:
        body = await self._request("GET", f"/files/{fingerprint}", endpoint="files")
        attributes = _attributes(body)

        stats_data = attributes.get("last_analysis_stats")
        try:
            stats = DetectionStats.from_mapping(stats_data) if stats_data is not None else None
        except (TypeError, ValueError, AttributeError) as exc:
            raise FatalResponseError(f"Malformed last_analysis_stats: {exc}") from exc

        analysis_id = attributes.get("last_analysis_id")
        return FileRecord(
            fingerprint=fingerprint,
            last_analysis_stats=stats,
            last_analysis_id=str(analysis_id) if analysis_id else None,
        )

    async def upload_file(self, data: bytes, filename: str) -> str:
        files = {"file": (filename, data, "application/octet-stream")}
        body = await self._request("POST", "/files", endpoint="upload", files=files)
        try:
            analysis_id = body["data"]["id"]
        except (KeyError, TypeError) as exc:
            raise FatalResponseError("Upload response carried no analysis id") from exc
        if not isinstance(analysis_id, str) or not analysis_id:
            raise FatalResponseError(f"Invalid analysis id in upload response: {analysis_id!r}")

        logger.info("VirusTotal upload accepted filename=%s analysis_id=%s", filename, analysis_id)
        return analysis_id

    async def get_analysis(self, analysis_id: str) -> AnalysisReport:
        try:
            body = await self._request("GET", f"/analyses/{analysis_id}", endpoint="analyses")
        except BadRequestError as exc:
            if exc.code == _NOT_AVAILABLE_YET:
                raise AnalysisPendingError(
                    f"Analysis {analysis_id} not available yet", exc.status_code
                ) from exc
            raise

        attributes = _attributes(body)
        status = attributes.get("status")
        if not isinstance(status, str):
            raise FatalResponseError(f"Analysis {analysis_id} has no status")

        stats_data = attributes.get("stats")
        try:
            stats = DetectionStats.from_mapping(stats_data) if stats_data is not None else None
        except (TypeError, ValueError, AttributeError) as exc:
            raise FatalResponseError(f"Malformed analysis stats: {exc}") from exc
        return AnalysisReport(status=status, stats=stats)

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {"x-apikey": self._api_key, "Accept": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        endpoint: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON body.

        Raises the :mod:`vtguard.core.errors` exception matching the
        response status; records the outcome in ``vt_requests_total``.
        """
        url = f"{self._base_url}{path}"
        try:
            response = await self._send(method, url, **kwargs)
            _raise_for_status(response)
            try:
                body = response.json()
            except ValueError as exc:
                raise FatalResponseError(
                    f"Non-JSON response from {path}", response.status_code
                ) from exc
            if not isinstance(body, dict):
                raise FatalResponseError(
                    f"Unexpected JSON payload from {path}", response.status_code
                )
        except ScanServiceError as exc:
            outcome = _OUTCOME_BY_ERROR.get(type(exc), "fatal")
            vt_requests_total.labels(endpoint=endpoint, outcome=outcome).inc()
            logger.warning(
                "VirusTotal %s %s failed status=%s outcome=%s: %s",
                method,
                path,
                exc.status_code,
                outcome,
                exc,
            )
            raise

        vt_requests_total.labels(endpoint=endpoint, outcome="ok").inc()
        logger.debug("VirusTotal %s %s status=%d", method, path, response.status_code)
        return body

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Execute the HTTP call, mapping network failures to TransientError."""
        try:
            if self._http_client is not None:
                return await self._http_client.request(
                    method,
                    url,
                    headers=self._headers(),
                    timeout=self._timeout,
                    **kwargs,
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientError(f"Timed out calling {url}") from exc
        except httpx.RequestError as exc:
            raise TransientError(f"Network error calling {url}: {exc}") from exc


# ---------------------------------------------------------------------------
# Module-level response helpers
# ---------------------------------------------------------------------------


def _raise_for_status(response: httpx.Response) -> None:
    """Raise the taxonomy exception for a non-2xx *response*."""
    status = response.status_code
    if 200 <= status < 300:
        return

    message = _error_message(response)
    if status == 404:
        raise NotFoundError(message, status)
    if status == 409:
        raise ConflictError(message, status)
    if status == 429:
        raise RateLimitedError(message, status)
    if status == 400:
        raise BadRequestError(message, status, code=_error_code(response))
    if status >= 500:
        raise TransientError(message, status)
    raise FatalResponseError(message, status)


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {}


def _error_code(response: httpx.Response) -> str | None:
    code = _error_payload(response).get("code")
    return code if isinstance(code, str) else None


def _error_message(response: httpx.Response) -> str:
    payload = _error_payload(response)
    detail = payload.get("message") or payload.get("code") or response.reason_phrase
    return f"HTTP {response.status_code}: {detail}"


def _attributes(body: dict[str, Any]) -> dict[str, Any]:
    """Return ``body["data"]["attributes"]`` or raise FatalResponseError."""
    data = body.get("data")
    attributes = data.get("attributes") if isinstance(data, dict) else None
    if not isinstance(attributes, dict):
        raise FatalResponseError("Response has no data.attributes object")
    return attributes
