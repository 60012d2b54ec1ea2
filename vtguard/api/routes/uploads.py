"""API routes for scanned uploads and the caller's stored files.

Endpoints
---------
POST   /v1/uploads
    Multipart upload (field ``file``).  The file is scanned; malicious files
    are reported but never stored.  Responds with the verdict and, for stored
    files, a download URL.  The call may take tens of seconds while the
    remote analysis is polled.

GET    /v1/files
    List the caller's stored files.

GET    /v1/files/{file_id}
    Download one of the caller's stored files.

DELETE /v1/files/{file_id}
    Delete one of the caller's stored files.

DELETE /v1/files
    Delete all of the caller's stored files.

All endpoints require the ``X-User-Id`` identity header (handled by
:class:`~vtguard.api.middleware.identity.IdentityMiddleware`).  Callers only
see and delete their own files.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response

from vtguard.schemas.upload import BulkDeleteResponse, DeleteResponse, FileOut
from vtguard.services.storage import StorageError
from vtguard.services.uploads import (
    FileEntry,
    MissingIdentityError,
    PermissionDeniedError,
    StoredFileNotFoundError,
    UploadRejectedError,
    UploadService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["uploads"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def get_upload_service(request: Request) -> UploadService:
    """Return the :class:`UploadService` attached to the application state."""
    service = getattr(request.app.state, "upload_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Upload service not initialised")
    return service  # type: ignore[no-any-return]


def _get_user_id(request: Request) -> str | None:
    """Return the caller identity attached by IdentityMiddleware."""
    return getattr(request.state, "user_id", None)


def _to_out(entry: FileEntry) -> FileOut:
    return FileOut(
        id=entry.file_id,
        original_name=entry.original_name,
        url=entry.url,
        verdict=entry.verdict,  # type: ignore[arg-type]
        user_id=entry.user_id,
        scan_handle=entry.scan_handle,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/uploads", response_model=FileOut)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    service: UploadService = Depends(get_upload_service),
) -> FileOut:
    """Scan an uploaded file and store it unless it is malicious."""
    # One byte past the limit is enough for the size check to reject the upload.
    data = await file.read(service.max_upload_bytes + 1)
    filename = file.filename or "upload"
    try:
        entry = await service.upload(data, filename, file.content_type, _get_user_id(request))
    except MissingIdentityError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except UploadRejectedError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StorageError as exc:
        logger.error("Storage failure for upload filename=%s: %s", filename, exc)
        raise HTTPException(status_code=502, detail="Upload failed")

    request.state.scan_verdict = entry.verdict
    logger.info("File %s scan verdict: %s", filename, entry.verdict)
    return _to_out(entry)


@router.get("/files", response_model=list[FileOut])
async def list_files(
    request: Request,
    service: UploadService = Depends(get_upload_service),
) -> list[FileOut]:
    """List the caller's stored files."""
    try:
        entries = await service.list_files(_get_user_id(request))
    except MissingIdentityError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    return [_to_out(entry) for entry in entries]


@router.get("/files/{file_id}")
async def download_file(
    file_id: str,
    request: Request,
    service: UploadService = Depends(get_upload_service),
) -> Response:
    """Return the bytes of one of the caller's stored files."""
    try:
        entry, data = await service.read_file(_get_user_id(request), file_id)
    except MissingIdentityError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except StoredFileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc))

    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{entry.file_id}"'},
    )


@router.delete("/files/{file_id}", response_model=DeleteResponse)
async def delete_file(
    file_id: str,
    request: Request,
    service: UploadService = Depends(get_upload_service),
) -> DeleteResponse:
    """Delete one of the caller's stored files."""
    try:
        await service.delete_file(_get_user_id(request), file_id)
    except MissingIdentityError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except StoredFileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return DeleteResponse()


@router.delete("/files", response_model=BulkDeleteResponse)
async def delete_all_files(
    request: Request,
    service: UploadService = Depends(get_upload_service),
) -> BulkDeleteResponse:
    """Delete every file the caller owns."""
    try:
        summary = await service.delete_all(_get_user_id(request))
    except MissingIdentityError as exc:
        raise HTTPException(status_code=401, detail=str(exc))

    if summary.deleted == 0 and summary.failed == 0:
        message = "No files found to delete"
    else:
        message = f"Deleted {summary.deleted} files, failed to delete {summary.failed} files"
    return BulkDeleteResponse(
        message=message,
        deleted_count=summary.deleted,
        failed_count=summary.failed,
    )
