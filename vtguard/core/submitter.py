"""ScanSubmitter — find or create a remote analysis for a file.

Submission avoids redundant uploads: the fingerprint is looked up first and
the file is only uploaded when the service has never seen it.

Algorithm
---------
1. ``get_file(fingerprint)``.  Found → fingerprint handle carrying the
   fetched record (the poller will not fetch it again).
2. Not found → ``upload_file``; return the new analysis ID.  A transient
   lookup failure is logged and the upload is attempted anyway.
3. Upload refused with a conflict, a bad request (duplicate analysis in
   flight) or a transient error → retry the lookup once.  If that also
   fails, the fingerprint itself becomes a synthetic handle; the submission
   does not fail.
4. :class:`~vtguard.core.errors.RateLimitedError` always propagates.
"""

from __future__ import annotations

import logging

from vtguard.core.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    RateLimitedError,
    ScanServiceError,
    TransientError,
)
from vtguard.core.verdict import ScanHandle
from vtguard.engines.base import ScanServiceClient

logger = logging.getLogger(__name__)


class ScanSubmitter:
    """Submit files to a :class:`~vtguard.engines.base.ScanServiceClient`.

    Args:
        client: Remote scan-service client.
    """

    def __init__(self, client: ScanServiceClient) -> None:
        self._client = client

    async def submit(self, data: bytes, filename: str, fingerprint: str) -> ScanHandle:
        """Return a handle for the analysis of *data*.

        Args:
            data: Raw file bytes.
            filename: Original filename sent with the upload.
            fingerprint: SHA-256 of *data*.

        Returns:
            A :class:`~vtguard.core.verdict.ScanHandle` — the fingerprint
            (with its record when known) or a server-issued analysis ID.

        Raises:
            RateLimitedError: The service quota is exhausted.
            FatalResponseError: The upload response was malformed.
            ScanServiceError: Any other unexpected service failure.
        """
        try:
            record = await self._client.get_file(fingerprint)
        except NotFoundError:
            logger.info("File not known remotely fingerprint=%s; uploading", fingerprint)
        except TransientError as exc:
            logger.warning(
                "Fingerprint lookup failed fingerprint=%s error=%s; uploading anyway",
                fingerprint,
                exc,
            )
        else:
            logger.info("File already known remotely fingerprint=%s", fingerprint)
            return ScanHandle(value=fingerprint, record=record)

        try:
            analysis_id = await self._client.upload_file(data, filename)
        except (ConflictError, BadRequestError, TransientError) as exc:
            logger.warning(
                "Upload refused fingerprint=%s error=%s; retrying lookup",
                fingerprint,
                exc,
            )
            return await self._lookup_or_synthetic(fingerprint)

        return ScanHandle(value=analysis_id)

    async def _lookup_or_synthetic(self, fingerprint: str) -> ScanHandle:
        """Retry the fingerprint lookup once; fall back to a bare fingerprint handle."""
        try:
            record = await self._client.get_file(fingerprint)
        except RateLimitedError:
            raise
        except ScanServiceError as exc:
            logger.warning(
                "Retry lookup failed fingerprint=%s error=%s; using fingerprint as handle",
                fingerprint,
                exc,
            )
            return ScanHandle(value=fingerprint)
        return ScanHandle(value=fingerprint, record=record)
