"""Abstract remote scan-service client interface.

The submitter and poller depend only on :class:`ScanServiceClient`; the
default implementation is
:class:`~vtguard.engines.virustotal.VirusTotalClient`.

Usage::

    from vtguard.engines.base import ScanServiceClient

    class MyClient(ScanServiceClient):
        async def get_file(self, fingerprint: str) -> FileRecord:
            ...

        async def upload_file(self, data: bytes, filename: str) -> str:
            ...

        async def get_analysis(self, analysis_id: str) -> AnalysisReport:
            ...
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from vtguard.core.verdict import AnalysisReport, FileRecord


class ScanServiceClient(ABC):
    """Abstract interface for a remote malware-analysis service.

    Implementations translate transport outcomes into the exception
    hierarchy of :mod:`vtguard.core.errors`; they never retry and never
    apply verdict policy.  Instances must be safe for concurrent use from
    multiple coroutines.

    Example — minimal stub for unit tests::

        class FakeClient(ScanServiceClient):
            async def get_file(self, fingerprint: str) -> FileRecord:
                raise NotFoundError("unknown file", 404)

            async def upload_file(self, data: bytes, filename: str) -> str:
                return "analysis-1"

            async def get_analysis(self, analysis_id: str) -> AnalysisReport:
                return AnalysisReport(status="completed", stats=DetectionStats())
    """

    @abstractmethod
    async def get_file(self, fingerprint: str) -> FileRecord:
        """Fetch the service's record for *fingerprint*.

        Raises:
            NotFoundError: The service has never seen this content.
            RateLimitedError: The request quota is exhausted.
            TransientError: Network failure or 5xx.
            FatalResponseError: Malformed response.
        """

    @abstractmethod
    async def upload_file(self, data: bytes, filename: str) -> str:
        """Upload *data* for analysis and return the new analysis ID.

        Raises:
            ConflictError: The file already exists server-side.
            BadRequestError: The service refused the upload (e.g. an analysis
                for the same content is already in flight).
            RateLimitedError: The request quota is exhausted.
            TransientError: Network failure or 5xx.
            FatalResponseError: The response carried no analysis ID.
        """

    @abstractmethod
    async def get_analysis(self, analysis_id: str) -> AnalysisReport:
        """Fetch the current state of analysis *analysis_id*.

        Raises:
            AnalysisPendingError: The service reports the analysis is not
                available yet.
            RateLimitedError: The request quota is exhausted.
            NotFoundError: No such analysis.
            TransientError: Network failure or 5xx.
            FatalResponseError: Malformed response.
        """
