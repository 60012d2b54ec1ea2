"""Unit tests for ScanSubmitter.

The scan-service client is an :class:`unittest.mock.AsyncMock` with the
:class:`~vtguard.engines.base.ScanServiceClient` spec, so every test can
assert exactly which remote calls were issued.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from vtguard.core.errors import (
    BadRequestError,
    ConflictError,
    FatalResponseError,
    NotFoundError,
    RateLimitedError,
    TransientError,
)
from vtguard.core.fingerprint import fingerprint
from vtguard.core.submitter import ScanSubmitter
from vtguard.core.verdict import DetectionStats, FileRecord
from vtguard.engines.base import ScanServiceClient

_DATA = b"some uploaded bytes"
_FP = fingerprint(_DATA)


def _mock_client() -> AsyncMock:
    return AsyncMock(spec=ScanServiceClient)


def _record(**kwargs) -> FileRecord:
    return FileRecord(fingerprint=_FP, **kwargs)


# ---------------------------------------------------------------------------
# Known files
# ---------------------------------------------------------------------------


class TestKnownFile:
    async def test_known_file_returns_fingerprint_handle_with_record(self) -> None:
        client = _mock_client()
        record = _record(last_analysis_stats=DetectionStats(malicious=2))
        client.get_file.return_value = record

        handle = await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)

        assert handle.value == _FP
        assert handle.is_fingerprint
        assert handle.record is record
        client.get_file.assert_awaited_once_with(_FP)
        client.upload_file.assert_not_awaited()


# ---------------------------------------------------------------------------
# Upload path
# ---------------------------------------------------------------------------


class TestUploadPath:
    async def test_unknown_file_is_uploaded(self) -> None:
        client = _mock_client()
        client.get_file.side_effect = NotFoundError("not found", 404)
        client.upload_file.return_value = "analysis-1"

        handle = await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)

        assert handle.value == "analysis-1"
        assert not handle.is_fingerprint
        assert handle.record is None
        client.upload_file.assert_awaited_once_with(_DATA, "a.pdf")

    async def test_transient_lookup_failure_still_uploads(self) -> None:
        client = _mock_client()
        client.get_file.side_effect = TransientError("boom", 503)
        client.upload_file.return_value = "analysis-2"

        handle = await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)

        assert handle.value == "analysis-2"

    @pytest.mark.parametrize(
        "upload_error",
        [
            ConflictError("exists", 409),
            BadRequestError("in flight", 400),
            TransientError("bad gateway", 502),
        ],
    )
    async def test_refused_upload_retries_lookup_once(self, upload_error: Exception) -> None:
        client = _mock_client()
        record = _record(last_analysis_id="an-9")
        client.get_file.side_effect = [NotFoundError("not found", 404), record]
        client.upload_file.side_effect = upload_error

        handle = await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)

        assert handle.value == _FP
        assert handle.record is record
        assert client.get_file.await_count == 2

    async def test_refused_upload_and_failed_retry_falls_back_to_fingerprint(self) -> None:
        client = _mock_client()
        client.get_file.side_effect = [
            NotFoundError("not found", 404),
            NotFoundError("still not found", 404),
        ]
        client.upload_file.side_effect = ConflictError("exists", 409)

        handle = await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)

        assert handle.value == _FP
        assert handle.record is None
        assert client.get_file.await_count == 2


# ---------------------------------------------------------------------------
# Errors that propagate
# ---------------------------------------------------------------------------


class TestPropagatedErrors:
    async def test_rate_limited_lookup_propagates(self) -> None:
        client = _mock_client()
        client.get_file.side_effect = RateLimitedError("quota", 429)

        with pytest.raises(RateLimitedError):
            await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)

        client.upload_file.assert_not_awaited()

    async def test_rate_limited_upload_propagates(self) -> None:
        client = _mock_client()
        client.get_file.side_effect = NotFoundError("not found", 404)
        client.upload_file.side_effect = RateLimitedError("quota", 429)

        with pytest.raises(RateLimitedError):
            await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)

    async def test_rate_limited_retry_lookup_propagates(self) -> None:
        client = _mock_client()
        client.get_file.side_effect = [
            NotFoundError("not found", 404),
            RateLimitedError("quota", 429),
        ]
        client.upload_file.side_effect = ConflictError("exists", 409)

        with pytest.raises(RateLimitedError):
            await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)

    async def test_malformed_upload_response_propagates(self) -> None:
        client = _mock_client()
        client.get_file.side_effect = NotFoundError("not found", 404)
        client.upload_file.side_effect = FatalResponseError("no id")

        with pytest.raises(FatalResponseError):
            await ScanSubmitter(client).submit(_DATA, "a.pdf", _FP)
