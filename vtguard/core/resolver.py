"""VerdictResolver — one-call file verdicts with a single failure policy.

:class:`VerdictResolver` is the only entry point the upload pipeline needs.
It combines the filename blocklist, fingerprinting, submission and polling
and guarantees that every call ends in exactly one of ``clean``,
``malicious`` or ``unknown``.

Steps
-----
1. **blocklist** — a filename containing a known test-payload marker
   (EICAR and its archive variants) is ``malicious``; no network call.
2. **fingerprint** — SHA-256 of the bytes.
3. **submit** — :class:`~vtguard.core.submitter.ScanSubmitter`.  A rate-limited
   submission continues with the fingerprint as handle and a doubled delay
   before the first poll; any other failure applies the failure verdict.
4. **poll** — :class:`~vtguard.core.poller.VerdictPoller` with a finite
   attempt budget.  Timeout, rate limit or any other error applies the
   failure verdict.

Failure policy
--------------
Scanner failures resolve to :data:`DEFAULT_FAILURE_VERDICT` (``clean``,
i.e. fail-open: availability of the upload pipeline is preferred over strict
interception while the third-party scanner is degraded).  Deployments that
need a fail-closed posture pass ``failure_verdict=Verdict.MALICIOUS`` (setting
``SCAN_FAILURE_VERDICT=malicious``).  Remote-service errors never escape
:meth:`VerdictResolver.resolve`; task cancellation does.

Usage::

    from vtguard.core.resolver import VerdictResolver
    from vtguard.engines import VirusTotalClient

    resolver = VerdictResolver.from_settings(VirusTotalClient(api_key=key), settings)
    result = await resolver.resolve(file_bytes, "report.pdf")
    if result.verdict is Verdict.MALICIOUS:
        ...
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from prometheus_client import Counter

from vtguard.core.blocklist import DEFAULT_MARKERS, is_known_malicious
from vtguard.core.errors import RateLimitedError
from vtguard.core.fingerprint import fingerprint as compute_fingerprint
from vtguard.core.poller import DEFAULT_MAX_ATTEMPTS, VerdictPoller
from vtguard.core.submitter import ScanSubmitter
from vtguard.core.verdict import ResolveResult, ScanHandle, Verdict
from vtguard.engines.base import ScanServiceClient

if TYPE_CHECKING:
    from vtguard.config import Settings

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("vtguard.resolver")

#: Incremented once per resolve call.
#: Labels: ``verdict`` and ``source`` ("blocklist" | "remote" | "fallback").
scan_verdicts_total = Counter(
    "scan_verdicts_total",
    "Total number of file verdicts produced by the resolver",
    ["verdict", "source"],
)

#: Verdict applied whenever the remote scanner fails, rate-limits or times out.
DEFAULT_FAILURE_VERDICT = Verdict.CLEAN


class VerdictResolver:
    """Resolve a file to a terminal verdict.

    Args:
        submitter: Finds or creates the remote analysis.
        poller: Polls the analysis until it completes.
        max_attempts: Poll budget per resolve call.
        failure_verdict: Verdict applied on any scanner failure.  Must be
            terminal.
        blocklist_markers: Filename substrings that short-circuit to
            ``malicious``.
        timeout: Optional hard deadline in seconds for the remote part of a
            resolve call.  ``None`` relies on the poll budget alone.
    """

    def __init__(
        self,
        submitter: ScanSubmitter,
        poller: VerdictPoller,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        failure_verdict: Verdict = DEFAULT_FAILURE_VERDICT,
        blocklist_markers: Iterable[str] = DEFAULT_MARKERS,
        timeout: float | None = None,
    ) -> None:
        if not failure_verdict.is_terminal:
            raise ValueError("failure_verdict must be a terminal verdict")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._submitter = submitter
        self._poller = poller
        self._max_attempts = max_attempts
        self._failure_verdict = failure_verdict
        self._markers = tuple(blocklist_markers)
        self._timeout = timeout

    @classmethod
    def from_settings(cls, client: ScanServiceClient, settings: Settings) -> VerdictResolver:
        """Build a resolver wired to *client* using application *settings*."""
        return cls(
            ScanSubmitter(client),
            VerdictPoller(client, poll_interval=settings.poll_interval_seconds),
            max_attempts=settings.max_poll_attempts,
            failure_verdict=Verdict(settings.scan_failure_verdict),
            blocklist_markers=settings.blocklist_markers,
            timeout=settings.resolve_timeout_seconds,
        )

    @property
    def failure_verdict(self) -> Verdict:
        return self._failure_verdict

    def is_blocklisted(self, filename: str) -> bool:
        return is_known_malicious(filename, self._markers)

    async def resolve(self, data: bytes, filename: str) -> ResolveResult:
        """Return the verdict for *data* uploaded as *filename*.

        Never raises for scanner failures; those resolve to the failure
        verdict with ``source="fallback"``.
        """
        if self.is_blocklisted(filename):
            logger.info("Known malicious test file blocked by name filename=%s", filename)
            return self._record(ResolveResult(verdict=Verdict.MALICIOUS, source="blocklist"))

        fingerprint = compute_fingerprint(data)
        with tracer.start_as_current_span("vtguard.resolve") as span:
            span.set_attribute("file.fingerprint", fingerprint)
            span.set_attribute("file.size_bytes", len(data))
            try:
                if self._timeout is None:
                    result = await self._scan(data, filename, fingerprint)
                else:
                    result = await asyncio.wait_for(
                        self._scan(data, filename, fingerprint), self._timeout
                    )
            except asyncio.TimeoutError:
                logger.warning(
                    "Resolve deadline of %.1fs exceeded fingerprint=%s",
                    self._timeout,
                    fingerprint,
                )
                result = self._fallback(fingerprint, None, "deadline exceeded")
            span.set_attribute("scan.verdict", result.verdict.value)
            span.set_attribute("scan.source", result.source)

        logger.info(
            "Scan verdict filename=%s fingerprint=%s verdict=%s source=%s handle=%s",
            filename,
            fingerprint,
            result.verdict.value,
            result.source,
            result.scan_handle,
        )
        return self._record(result)

    async def _scan(self, data: bytes, filename: str, fingerprint: str) -> ResolveResult:
        initial_delay = 0.0
        with tracer.start_as_current_span("vtguard.submit") as span:
            try:
                handle = await self._submitter.submit(data, filename, fingerprint)
            except RateLimitedError as exc:
                span.record_exception(exc)
                handle = ScanHandle(value=fingerprint)
                initial_delay = self._poller.poll_interval * 2
                logger.warning(
                    "Submission rate limited fingerprint=%s; polling by fingerprint in %.1fs",
                    fingerprint,
                    initial_delay,
                )
            except Exception as exc:  # noqa: BLE001
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                return self._fallback(fingerprint, None, f"submission failed: {exc!r}")
            span.set_attribute("scan.handle", handle.value)

        with tracer.start_as_current_span("vtguard.poll") as span:
            try:
                verdict = await self._poller.poll_with_retry(
                    handle,
                    max_attempts=self._max_attempts,
                    initial_delay=initial_delay,
                )
            except Exception as exc:  # noqa: BLE001
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                return self._fallback(fingerprint, handle.value, f"polling failed: {exc!r}")

        return ResolveResult(
            verdict=verdict,
            scan_handle=handle.value,
            fingerprint=fingerprint,
            source="remote",
        )

    def _fallback(self, fingerprint: str, handle: str | None, reason: str) -> ResolveResult:
        logger.warning(
            "Applying failure verdict=%s fingerprint=%s reason=%s",
            self._failure_verdict.value,
            fingerprint,
            reason,
        )
        return ResolveResult(
            verdict=self._failure_verdict,
            scan_handle=handle,
            fingerprint=fingerprint,
            source="fallback",
        )

    @staticmethod
    def _record(result: ResolveResult) -> ResolveResult:
        scan_verdicts_total.labels(verdict=result.verdict.value, source=result.source).inc()
        return result
