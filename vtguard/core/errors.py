"""Exception hierarchy for remote scan-service interactions.

Every error raised by a :class:`~vtguard.engines.base.ScanServiceClient`
implementation derives from :class:`ScanServiceError` so that the resolver
can apply its single fail-open (or fail-closed) policy at one boundary.

Taxonomy
--------
``NotFoundError``
    Expected: the service has no record for a fingerprint.  Drives the
    upload path in the submitter.
``ConflictError`` / ``BadRequestError``
    The upload was refused because the file already exists server-side or an
    analysis for it is already in flight.  The submitter retries the lookup.
``RateLimitedError``
    The external quota is exhausted.  Must never be swallowed below the
    resolver because it changes retry timing upstream.
``AnalysisPendingError``
    Expected: the analysis has not completed yet.  Drives the poll loop.
``TransientError``
    Network failure, timeout or 5xx response.
``FatalResponseError``
    Malformed response body or an unexpected status code.
``AnalysisTimeoutError``
    The poll loop exhausted its attempt budget without a completed analysis.
"""

from __future__ import annotations


class ScanServiceError(Exception):
    """Base exception for all remote scan-service errors.

    Attributes:
        status_code: HTTP status code that triggered the error, when one was
            received.  ``None`` for network-level failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ScanServiceError):
    """The service has no record for the requested fingerprint or analysis."""


class ConflictError(ScanServiceError):
    """The service reports that the uploaded file already exists."""


class BadRequestError(ScanServiceError):
    """The service rejected the request as invalid (HTTP 400).

    Attributes:
        code: The service's machine-readable error code, if any
            (e.g. ``"NotAvailableYet"``).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = 400,
        code: str | None = None,
    ) -> None:
        super().__init__(message, status_code)
        self.code = code


class RateLimitedError(ScanServiceError):
    """The external request quota has been exhausted (HTTP 429)."""


class AnalysisPendingError(ScanServiceError):
    """The analysis exists but has not produced a verdict yet."""


class TransientError(ScanServiceError):
    """A network error, timeout, or 5xx response from the service."""


class FatalResponseError(ScanServiceError):
    """The service answered with a malformed body or an unexpected status."""


class AnalysisTimeoutError(ScanServiceError):
    """Polling gave up after the configured number of attempts.

    Attributes:
        attempts: Number of lookups issued before giving up.
    """

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Analysis did not complete after {attempts} attempt(s)")
        self.attempts = attempts
