"""VerdictPoller — bounded polling of a remote analysis.

:class:`VerdictPoller` turns a :class:`~vtguard.core.verdict.ScanHandle` into
a terminal :class:`~vtguard.core.verdict.Verdict` by querying the remote
service until the analysis completes or the attempt budget runs out.

Lookup rules
------------
* **Fingerprint handle** — fetch the file record (or reuse the one fetched at
  submission, first attempt only, when it carries stats or an analysis ID).  An embedded ``last_analysis_stats`` is a
  completed analysis.  Otherwise a ``last_analysis_id`` is followed to the
  analyses endpoint.  A record with neither, or an unknown file, is pending.
* **Analysis-ID handle** — query the analyses endpoint directly.

Retry policy
------------
Between two attempts the poller sleeps for ``poll_interval`` seconds
(default 8 s, which keeps a single flow inside the 4 requests/minute free
quota).  After a rate-limited attempt the next sleep is doubled.  Rate-limited
attempts are tracked separately from pending ones but still consume the
finite budget.  No sleep follows the final attempt, so the worst case is
bounded by roughly ``max_attempts * poll_interval`` plus doublings.

Terminal states
---------------
* completed        → the classified verdict is returned
* budget exhausted → :class:`~vtguard.core.errors.AnalysisTimeoutError`, or
  :class:`~vtguard.core.errors.RateLimitedError` when the final attempt was
  rate limited
* any other error  → propagated immediately

The only suspension point is :func:`asyncio.sleep`, so cancelling the
enclosing task abandons the loop without further outbound calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from vtguard.core.errors import (
    AnalysisPendingError,
    AnalysisTimeoutError,
    NotFoundError,
    RateLimitedError,
)
from vtguard.core.verdict import (
    STATUS_COMPLETED,
    AnalysisReport,
    ScanHandle,
    Verdict,
    classify,
)
from vtguard.engines.base import ScanServiceClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 8.0
DEFAULT_MAX_ATTEMPTS = 3

#: Multiplier applied to the poll interval after a rate-limited attempt.
_RATE_LIMIT_BACKOFF_FACTOR = 2


class PollState(str, Enum):
    """State of one polling session."""

    INIT = "init"
    PENDING = "pending"
    RATE_LIMITED = "rate_limited"
    COMPLETED = "completed"


@dataclass
class ScanAttempt:
    """Bookkeeping for a single :meth:`VerdictPoller.poll_with_retry` call.

    Created per call and discarded afterwards; never shared between calls.
    """

    attempts: int = 0
    rate_limited: int = 0
    waited_seconds: float = 0.0
    state: PollState = PollState.INIT


class VerdictPoller:
    """Poll a remote analysis until it yields a verdict.

    Args:
        client: Remote scan-service client.
        poll_interval: Seconds to wait between two pending attempts.
    """

    def __init__(
        self,
        client: ScanServiceClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if poll_interval < 0:
            raise ValueError("poll_interval must be non-negative")
        self._client = client
        self._poll_interval = poll_interval

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    async def poll(self, handle: ScanHandle) -> Verdict:
        """Issue a single lookup for *handle*.

        Returns:
            The classified verdict, or ``Verdict.PENDING`` when the analysis
            has not completed.

        Raises:
            RateLimitedError: The service quota is exhausted.
            ScanServiceError: Any other service failure.
        """
        return await self._lookup(handle, use_record=True)

    async def poll_with_retry(
        self,
        handle: ScanHandle,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_delay: float = 0.0,
    ) -> Verdict:
        """Poll *handle* until completion or until *max_attempts* lookups.

        Args:
            handle: Handle returned by the submitter.
            max_attempts: Upper bound on lookups.  Must be at least 1.
            initial_delay: Seconds to wait before the first lookup (used by
                the resolver after a rate-limited submission).

        Returns:
            A terminal verdict.

        Raises:
            AnalysisTimeoutError: Every attempt ended pending.
            RateLimitedError: The final attempt was rate limited.
            ScanServiceError: Any other failure, raised on first occurrence.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        attempt = ScanAttempt()
        delay = initial_delay

        while attempt.attempts < max_attempts:
            if delay > 0:
                logger.debug(
                    "Waiting %.1fs before polling handle=%s (attempt %d/%d)",
                    delay,
                    handle,
                    attempt.attempts + 1,
                    max_attempts,
                )
                await asyncio.sleep(delay)
                attempt.waited_seconds += delay

            attempt.attempts += 1
            logger.info(
                "Polling analysis handle=%s attempt=%d/%d",
                handle,
                attempt.attempts,
                max_attempts,
            )
            try:
                verdict = await self._lookup(handle, use_record=attempt.attempts == 1)
            except RateLimitedError:
                attempt.rate_limited += 1
                attempt.state = PollState.RATE_LIMITED
                delay = self._poll_interval * _RATE_LIMIT_BACKOFF_FACTOR
                logger.warning(
                    "Rate limited while polling handle=%s attempt=%d/%d; next wait %.1fs",
                    handle,
                    attempt.attempts,
                    max_attempts,
                    delay,
                )
                continue

            if verdict is not Verdict.PENDING:
                attempt.state = PollState.COMPLETED
                logger.info(
                    "Analysis complete handle=%s verdict=%s attempts=%d waited=%.1fs",
                    handle,
                    verdict.value,
                    attempt.attempts,
                    attempt.waited_seconds,
                )
                return verdict

            attempt.state = PollState.PENDING
            delay = self._poll_interval

        logger.warning(
            "Polling gave up handle=%s attempts=%d rate_limited=%d waited=%.1fs",
            handle,
            attempt.attempts,
            attempt.rate_limited,
            attempt.waited_seconds,
        )
        if attempt.state is PollState.RATE_LIMITED:
            raise RateLimitedError(
                f"Rate limited on final poll attempt ({attempt.rate_limited} of "
                f"{attempt.attempts} attempts rate limited)",
                429,
            )
        raise AnalysisTimeoutError(attempt.attempts)

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    async def _lookup(self, handle: ScanHandle, use_record: bool) -> Verdict:
        if handle.is_fingerprint:
            return await self._lookup_file(handle, use_record)
        return await self._lookup_analysis(handle.value)

    async def _lookup_file(self, handle: ScanHandle, use_record: bool) -> Verdict:
        record = handle.record if use_record else None
        # A record with neither stats nor an analysis ID settles nothing.
        if record is None or (record.last_analysis_stats is None and not record.last_analysis_id):
            try:
                record = await self._client.get_file(handle.value)
            except NotFoundError:
                # Content not indexed yet (e.g. synthetic handle after a refused upload).
                return Verdict.PENDING

        if record.last_analysis_stats is not None:
            return classify(
                AnalysisReport(status=STATUS_COMPLETED, stats=record.last_analysis_stats)
            )
        if record.last_analysis_id:
            return await self._lookup_analysis(record.last_analysis_id)
        return Verdict.PENDING

    async def _lookup_analysis(self, analysis_id: str) -> Verdict:
        try:
            report = await self._client.get_analysis(analysis_id)
        except AnalysisPendingError:
            return Verdict.PENDING
        return classify(report)
