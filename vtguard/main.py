import asyncio
import contextlib
import logging

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from vtguard.api.middleware.identity import IdentityMiddleware
from vtguard.api.middleware.logging import RequestLoggingMiddleware
from vtguard.api.routes.uploads import router as uploads_router
from vtguard.config import get_settings
from vtguard.core.resolver import VerdictResolver
from vtguard.engines.virustotal import VirusTotalClient
from vtguard.services.storage import LocalBlobStore
from vtguard.services.uploads import UploadService

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="vtguard API",
    description="Upload gateway that scans files with VirusTotal before storing them",
    version="1.0.0",
    docs_url="/v1/docs",
    openapi_url="/v1/openapi.json",
)

app.add_middleware(IdentityMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(uploads_router)

# Shared objects stored on app state so they can be accessed by routes and tests
app.state.http_client = None
app.state.upload_service = None
app.state.cleanup_task = None


@app.get("/healthz", tags=["health"])
async def health_check() -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def _cleanup_loop(service: UploadService, interval: int) -> None:
    """Periodically remove malicious files that reached the blob store."""
    while True:
        await asyncio.sleep(interval)
        try:
            await service.cleanup_malicious()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Malicious file cleanup failed: %s", exc)


@app.on_event("startup")
async def startup_event() -> None:
    logger.info("vtguard API starting up")
    settings = get_settings()
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    app.state.http_client = httpx.AsyncClient(timeout=settings.vt_http_timeout_seconds)
    client = VirusTotalClient(
        api_key=settings.vt_api_key,
        base_url=settings.vt_base_url,
        timeout=settings.vt_http_timeout_seconds,
        http_client=app.state.http_client,
    )
    app.state.upload_service = UploadService(
        VerdictResolver.from_settings(client, settings),
        LocalBlobStore(settings.storage_dir, settings.public_base_url),
        allowed_extensions=settings.allowed_extensions,
        max_upload_bytes=settings.max_upload_bytes,
    )
    if settings.cleanup_interval_seconds > 0:
        app.state.cleanup_task = asyncio.create_task(
            _cleanup_loop(app.state.upload_service, settings.cleanup_interval_seconds)
        )
    logger.info(
        "Scanner initialised poll_interval=%.1fs max_attempts=%d failure_verdict=%s",
        settings.poll_interval_seconds,
        settings.max_poll_attempts,
        settings.scan_failure_verdict,
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    task = app.state.cleanup_task
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        app.state.cleanup_task = None
    if app.state.http_client is not None:
        await app.state.http_client.aclose()
        logger.info("HTTP client closed")
    logger.info("vtguard API shutting down")
