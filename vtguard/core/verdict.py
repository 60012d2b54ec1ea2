"""Verdict and remote-response types for the vtguard scan core.

The remote service speaks in file records and analysis reports; callers only
ever see a :class:`Verdict`.  :func:`classify` is the single place where a
remote analysis report is turned into a verdict.

Usage::

    from vtguard.core.verdict import AnalysisReport, DetectionStats, classify

    report = AnalysisReport(status="completed", stats=DetectionStats(malicious=2))
    classify(report)  # Verdict.MALICIOUS
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Mapping

from vtguard.core.fingerprint import is_fingerprint


class Verdict(str, Enum):
    """Classification of a scanned file.

    ``PENDING`` is the only non-terminal value; it never leaves the resolver.
    """

    CLEAN = "clean"
    MALICIOUS = "malicious"
    PENDING = "pending"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self is not Verdict.PENDING


#: Analysis status reported by the service once engines have finished.
STATUS_COMPLETED = "completed"


@dataclass(frozen=True)
class DetectionStats:
    """Per-category engine counts from a completed analysis."""

    malicious: int = 0
    suspicious: int = 0
    harmless: int = 0
    undetected: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DetectionStats:
        """Build stats from the service's ``stats`` / ``last_analysis_stats`` object.

        Missing categories default to ``0``.

        Raises:
            ValueError: If a present category is not an integer count.
        """
        values = {}
        for name in ("malicious", "suspicious", "harmless", "undetected"):
            raw = data.get(name, 0)
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise ValueError(f"stats.{name} must be an integer, got {raw!r}")
            values[name] = raw
        return cls(**values)


@dataclass(frozen=True)
class AnalysisReport:
    """Normalised analysis response.

    Attributes:
        status: Remote analysis status (``"queued"``, ``"in-progress"``,
            ``"completed"``...).
        stats: Detection counts.  ``None`` when the service did not include
            them.
    """

    status: str
    stats: DetectionStats | None = None


@dataclass(frozen=True)
class FileRecord:
    """File metadata returned by a fingerprint lookup.

    Attributes:
        fingerprint: The SHA-256 the record was fetched for.
        last_analysis_stats: Summary of the most recent analysis, when the
            service has one.
        last_analysis_id: Identifier of the most recent analysis, when the
            service exposes it without a summary.
    """

    fingerprint: str
    last_analysis_stats: DetectionStats | None = None
    last_analysis_id: str | None = None


@dataclass(frozen=True)
class ScanHandle:
    """Opaque reference to a remote analysis.

    The handle is either a server-issued analysis ID or a fingerprint.  The
    two are told apart by format alone (see :attr:`is_fingerprint`), so a
    handle can be stored as a plain string and looked up later without extra
    context.

    Attributes:
        value: The analysis ID or fingerprint string.
        record: File record fetched while submitting, if any.  The poller uses
            it in place of its first lookup.
    """

    value: str
    record: FileRecord | None = None

    @property
    def is_fingerprint(self) -> bool:
        return is_fingerprint(self.value)

    def __str__(self) -> str:
        return self.value


def classify(report: AnalysisReport) -> Verdict:
    """Map an analysis report to a :class:`Verdict`.

    * not completed                → ``PENDING``
    * completed, no stats          → ``UNKNOWN``
    * completed, ``malicious > 0`` → ``MALICIOUS``
    * completed, otherwise         → ``CLEAN``
    """
    if report.status != STATUS_COMPLETED:
        return Verdict.PENDING
    if report.stats is None:
        return Verdict.UNKNOWN
    if report.stats.malicious > 0:
        return Verdict.MALICIOUS
    return Verdict.CLEAN


VerdictSource = Literal["blocklist", "remote", "fallback"]


@dataclass(frozen=True)
class ResolveResult:
    """Final outcome of one resolve call.

    Attributes:
        verdict: Terminal verdict (never ``PENDING``).
        scan_handle: String form of the handle that was polled.  ``None`` for
            blocklist hits and for failures before a handle existed.
        fingerprint: SHA-256 of the file.  ``None`` for blocklist hits.
        source: ``"blocklist"`` for fast-path hits, ``"remote"`` for verdicts
            produced by a completed analysis, ``"fallback"`` when the failure
            default was applied.
    """

    verdict: Verdict
    scan_handle: str | None = None
    fingerprint: str | None = None
    source: VerdictSource = "remote"
