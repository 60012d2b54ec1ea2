"""Smoke tests for the FastAPI app, configuration and the upload API.

The app is driven through :class:`httpx.ASGITransport`, which does not fire
startup events, so each test attaches its own :class:`UploadService` to
``app.state``.  The VirusTotal API is replaced with :class:`httpx.MockTransport`.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pydantic
import pytest
import pytest_asyncio
from starlette.datastructures import UploadFile
from httpx import ASGITransport, AsyncClient, MockTransport, Request, Response

from vtguard.config import Settings
from vtguard.core.fingerprint import fingerprint
from vtguard.core.resolver import VerdictResolver
from vtguard.engines.virustotal import VirusTotalClient
from vtguard.main import app, shutdown_event
from vtguard.services.storage import LocalBlobStore
from vtguard.services.uploads import UploadService

_CLEAN = b"%PDF-1.7 clean quarterly report"
_INFECTED = b"MZ definitely a dropper"
_USER = {"X-User-Id": "user_1"}


def _fake_virustotal(request: Request) -> Response:
    """Answer file lookups from a fixed table of known fingerprints."""
    known = {
        fingerprint(_CLEAN): {"malicious": 0, "harmless": 60},
        fingerprint(_INFECTED): {"malicious": 41, "harmless": 2},
    }
    sha256 = request.url.path.rsplit("/", 1)[-1]
    if request.method == "GET" and sha256 in known:
        return Response(
            200, json={"data": {"attributes": {"last_analysis_stats": known[sha256]}}}
        )
    return Response(429, json={"error": {"code": "QuotaExceededError", "message": "quota"}})


@pytest_asyncio.fixture
async def upload_service(tmp_path):
    http_client = AsyncClient(transport=MockTransport(_fake_virustotal))
    vt = VirusTotalClient(api_key="k", base_url="https://vt.test/api/v3", http_client=http_client)
    # Polls after a rate-limited submission would sleep; a 0.1 s deadline keeps
    # the fallback path fast.
    settings = Settings(vt_api_key="k", max_poll_attempts=1, resolve_timeout_seconds=0.1)
    resolver = VerdictResolver.from_settings(vt, settings)
    service = UploadService(
        resolver,
        LocalBlobStore(str(tmp_path / "files"), "http://test"),
        allowed_extensions=["pdf", "txt", "exe"],
    )
    app.state.upload_service = service
    yield service
    app.state.upload_service = None
    await http_client.aclose()


@pytest_asyncio.fixture
async def client(upload_service):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Health and identity
# ---------------------------------------------------------------------------


class TestHealthEndpoint:
    async def test_healthz_returns_ok_status(self, client: AsyncClient) -> None:
        response = await client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_protected_route_requires_identity(self, client: AsyncClient) -> None:
        response = await client.get("/v1/files")
        assert response.status_code == 401

    async def test_service_unavailable_before_startup(self) -> None:
        app.state.upload_service = None
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/v1/files", headers=_USER)
        assert response.status_code == 503


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


class TestUploads:
    async def test_clean_upload_is_stored(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/uploads",
            files={"file": ("report.pdf", _CLEAN, "application/pdf")},
            headers=_USER,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["verdict"] == "clean"
        assert body["url"] == f"http://test/v1/files/{body['id']}"
        assert body["scan_handle"] == fingerprint(_CLEAN)

        download = await client.get(f"/v1/files/{body['id']}", headers=_USER)
        assert download.status_code == 200
        assert download.content == _CLEAN

    async def test_malicious_upload_is_not_stored(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/uploads",
            files={"file": ("setup.exe", _INFECTED, "application/octet-stream")},
            headers=_USER,
        )

        body = response.json()
        assert body["verdict"] == "malicious"
        assert body["url"] is None
        assert (await client.get("/v1/files", headers=_USER)).json() == []

    async def test_eicar_name_is_malicious(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/uploads",
            files={"file": ("eicar.com.txt", b"harmless", "text/plain")},
            headers=_USER,
        )

        assert response.json()["verdict"] == "malicious"
        assert response.json()["scan_handle"] is None

    async def test_scanner_outage_fails_open(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/uploads",
            files={"file": ("notes.txt", b"never seen before", "text/plain")},
            headers=_USER,
        )

        assert response.status_code == 200
        assert response.json()["verdict"] == "clean"
        assert response.json()["url"] is not None

    async def test_blocked_extension_returns_400(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/uploads",
            files={"file": ("run.sh", b"#!/bin/sh", "application/x-sh")},
            headers=_USER,
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Blocked extension"

    async def test_oversized_upload_read_is_bounded(self, upload_service, tmp_path) -> None:
        resolver = AsyncMock(spec=VerdictResolver)
        store = LocalBlobStore(str(tmp_path / "small"), "http://test")
        app.state.upload_service = UploadService(resolver, store, max_upload_bytes=8)
        original_read = UploadFile.read

        with patch.object(UploadFile, "read", autospec=True, side_effect=original_read) as read:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                response = await ac.post(
                    "/v1/uploads",
                    files={"file": ("big.txt", b"x" * 1000, "text/plain")},
                    headers=_USER,
                )

        assert response.status_code == 400
        assert response.json()["detail"] == "File too large"
        assert read.await_args.args[1] == 9
        resolver.resolve.assert_not_awaited()


# ---------------------------------------------------------------------------
# File management
# ---------------------------------------------------------------------------


class TestFileManagement:
    async def _upload(self, client: AsyncClient, headers: dict) -> str:
        response = await client.post(
            "/v1/uploads",
            files={"file": ("report.pdf", _CLEAN, "application/pdf")},
            headers=headers,
        )
        return response.json()["id"]

    async def test_list_only_own_files(self, client: AsyncClient) -> None:
        mine = await self._upload(client, _USER)
        await self._upload(client, {"X-User-Id": "user_2"})

        response = await client.get("/v1/files", headers=_USER)

        assert [f["id"] for f in response.json()] == [mine]

    async def test_cannot_download_other_users_file(self, client: AsyncClient) -> None:
        file_id = await self._upload(client, {"X-User-Id": "user_2"})

        response = await client.get(f"/v1/files/{file_id}", headers=_USER)

        assert response.status_code == 403

    async def test_delete_single_file(self, client: AsyncClient) -> None:
        file_id = await self._upload(client, _USER)

        response = await client.delete(f"/v1/files/{file_id}", headers=_USER)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert (await client.get(f"/v1/files/{file_id}", headers=_USER)).status_code == 404

    async def test_delete_missing_file_returns_404(self, client: AsyncClient) -> None:
        response = await client.delete("/v1/files/missing.pdf", headers=_USER)
        assert response.status_code == 404

    async def test_delete_all(self, client: AsyncClient) -> None:
        await self._upload(client, _USER)
        await self._upload(client, _USER)

        response = await client.delete("/v1/files", headers=_USER)

        assert response.json() == {
            "success": True,
            "message": "Deleted 2 files, failed to delete 0 files",
            "deleted_count": 2,
            "failed_count": 0,
        }

    async def test_delete_all_with_nothing_stored(self, client: AsyncClient) -> None:
        response = await client.delete("/v1/files", headers=_USER)
        assert response.json()["message"] == "No files found to delete"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfiguration:
    def test_defaults(self) -> None:
        settings = Settings(vt_api_key="k", _env_file=None)

        assert settings.poll_interval_seconds == 8.0
        assert settings.max_poll_attempts == 3
        assert settings.scan_failure_verdict == "clean"
        assert settings.vt_base_url == "https://www.virustotal.com/api/v3"

    def test_api_key_read_from_environment(self) -> None:
        # Set by tests/conftest.py.
        assert Settings(_env_file=None).vt_api_key == "test-vt-api-key"

    def test_missing_api_key_raises(self, monkeypatch) -> None:
        monkeypatch.delenv("VT_API_KEY", raising=False)
        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None)

    def test_poll_interval_below_quota_floor_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Settings(vt_api_key="k", poll_interval_seconds=2.0, _env_file=None)

    def test_base_url_trailing_slash_stripped(self) -> None:
        settings = Settings(vt_api_key="k", vt_base_url="https://vt.test/api/v3/", _env_file=None)
        assert settings.vt_base_url == "https://vt.test/api/v3"

    def test_non_http_base_url_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Settings(vt_api_key="k", vt_base_url="ftp://vt.test", _env_file=None)

    def test_failure_verdict_must_be_known(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Settings(vt_api_key="k", scan_failure_verdict="pending", _env_file=None)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestShutdown:
    async def test_cleanup_task_is_cancelled_and_awaited(self) -> None:
        task = asyncio.create_task(asyncio.sleep(3600))
        app.state.cleanup_task = task
        app.state.http_client = None

        await shutdown_event()

        assert task.done()
        assert task.cancelled()
        assert app.state.cleanup_task is None

    async def test_shutdown_without_background_task(self) -> None:
        app.state.cleanup_task = None
        app.state.http_client = None

        await shutdown_event()
