"""UploadService — the upload pipeline around the verdict resolver.

:class:`UploadService` validates an upload, resolves its verdict, and
persists it through the :class:`~vtguard.services.storage.BlobStore` only
when the verdict is not ``malicious``.  It also lists, deletes and cleans up
a user's stored files.

Validation
----------
* A caller identity is required (:class:`MissingIdentityError`).
* The extension is derived from the MIME type, falling back to the filename
  suffix, and must be in the allow-list (:class:`UploadRejectedError`).
* The file must not exceed the configured size limit.

Listing applies the filename blocklist again: a stored object whose original
name matches a known test-payload marker is reported ``malicious`` with no
download URL, whatever verdict it was stored with.

Usage::

    from vtguard.services.uploads import UploadService

    service = UploadService(resolver, store, allowed_extensions=["pdf"])
    entry = await service.upload(data, "report.pdf", "application/pdf", user_id="u1")
    print(entry.verdict, entry.url)
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import uuid
from dataclasses import dataclass
from typing import Iterable

from vtguard.core.resolver import VerdictResolver
from vtguard.core.verdict import Verdict
from vtguard.services.storage import BlobStore, StoredFile

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 25 * 1024 * 1024


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class UploadError(Exception):
    """Base class for upload pipeline errors."""


class MissingIdentityError(UploadError):
    """No caller identity was supplied with the request."""


class UploadRejectedError(UploadError):
    """The upload failed validation (extension or size)."""


class StoredFileNotFoundError(UploadError):
    """The requested stored file does not exist."""


class PermissionDeniedError(UploadError):
    """The caller does not own the requested stored file."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileEntry:
    """A file as reported to the caller.

    Attributes:
        file_id: Public identifier (``"{uuid}.{ext}"``).
        original_name: Filename supplied by the uploader.
        url: Download URL; ``None`` for malicious files, which are never stored.
        verdict: ``"clean"``, ``"malicious"`` or ``"unknown"``.
        user_id: Owner of the file.
        scan_handle: Remote scan handle, when the verdict came from a scan.
    """

    file_id: str
    original_name: str
    url: str | None
    verdict: str
    user_id: str
    scan_handle: str | None = None


@dataclass(frozen=True)
class DeleteSummary:
    """Outcome of a bulk delete."""

    deleted: int
    failed: int


# ---------------------------------------------------------------------------
# UploadService
# ---------------------------------------------------------------------------


class UploadService:
    """Upload pipeline: validate, resolve, persist-unless-malicious.

    Args:
        resolver: Produces the verdict for each upload.
        store: Blob storage collaborator.
        allowed_extensions: Accepted extensions (lowercase, no dot).
        max_upload_bytes: Largest accepted upload.
    """

    def __init__(
        self,
        resolver: VerdictResolver,
        store: BlobStore,
        allowed_extensions: Iterable[str] = ("pdf", "png", "jpg", "jpeg", "docx", "txt", "zip", "exe"),
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._allowed = frozenset(ext.lower().lstrip(".") for ext in allowed_extensions)
        self._max_upload_bytes = max_upload_bytes

    @property
    def max_upload_bytes(self) -> int:
        return self._max_upload_bytes

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        data: bytes,
        filename: str,
        content_type: str | None,
        user_id: str | None,
    ) -> FileEntry:
        """Scan *data* and store it unless it is malicious.

        Raises:
            MissingIdentityError: *user_id* is empty.
            UploadRejectedError: Extension not allowed or file too large.
            StorageError: The blob store failed to persist a non-malicious file.
        """
        if not user_id:
            raise MissingIdentityError("User authentication required")

        ext = self.resolve_extension(filename, content_type)
        if ext is None:
            raise UploadRejectedError("Blocked extension")
        if len(data) > self._max_upload_bytes:
            raise UploadRejectedError("File too large")

        file_id = f"{uuid.uuid4()}.{ext}"
        result = await self._resolver.resolve(data, filename)

        if result.verdict is Verdict.MALICIOUS:
            logger.info(
                "Malicious upload suppressed file_id=%s filename=%s source=%s",
                file_id,
                filename,
                result.source,
            )
            return FileEntry(
                file_id=file_id,
                original_name=filename,
                url=None,
                verdict=result.verdict.value,
                user_id=user_id,
                scan_handle=result.scan_handle,
            )

        stored = await self._store.put(
            file_id,
            data,
            verdict=result.verdict.value,
            original_name=filename,
            user_id=user_id,
        )
        return FileEntry(
            file_id=stored.file_id,
            original_name=filename,
            url=stored.url,
            verdict=result.verdict.value,
            user_id=user_id,
            scan_handle=result.scan_handle,
        )

    def resolve_extension(self, filename: str, content_type: str | None) -> str | None:
        """Return the allowed extension for an upload, or ``None`` if blocked.

        The MIME type is consulted first; the filename suffix is used when
        the MIME type maps to no allowed extension.
        """
        candidates: list[str] = []
        if content_type:
            guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
            if guessed:
                candidates.append(guessed)
        suffix = os.path.splitext(filename)[1]
        if suffix:
            candidates.append(suffix)

        for candidate in candidates:
            ext = candidate.lower().lstrip(".")
            if ext in self._allowed:
                return ext
        return None

    # ------------------------------------------------------------------
    # Listing and deletion
    # ------------------------------------------------------------------

    async def list_files(self, user_id: str | None) -> list[FileEntry]:
        """Return the caller's stored files with blocklist verdict overrides."""
        if not user_id:
            raise MissingIdentityError("User authentication required")

        entries = [self._to_entry(stored) for stored in await self._store.list_files(user_id)]
        logger.info("Found %d files for user_id=%s", len(entries), user_id)
        return entries

    async def read_file(self, user_id: str | None, file_id: str) -> tuple[FileEntry, bytes]:
        """Return a stored file's entry and bytes after an ownership check.

        Raises:
            StoredFileNotFoundError: No such file, or the file is blocklisted.
            PermissionDeniedError: The caller does not own the file.
        """
        stored = await self._owned(user_id, file_id)
        entry = self._to_entry(stored)
        data = await self._store.read(file_id) if entry.url is not None else None
        if data is None:
            raise StoredFileNotFoundError(f"File {file_id} not found")
        return entry, data

    async def delete_file(self, user_id: str | None, file_id: str) -> None:
        """Delete one of the caller's files.

        Raises:
            StoredFileNotFoundError: No such file.
            PermissionDeniedError: The caller does not own the file.
        """
        await self._owned(user_id, file_id)
        if not await self._store.delete(file_id):
            raise StoredFileNotFoundError(f"File {file_id} not found")

    async def delete_all(self, user_id: str | None) -> DeleteSummary:
        """Delete every file the caller owns."""
        if not user_id:
            raise MissingIdentityError("User authentication required")

        stored = await self._store.list_files(user_id)
        if not stored:
            return DeleteSummary(deleted=0, failed=0)

        results = await asyncio.gather(
            *(self._store.delete(item.file_id) for item in stored),
            return_exceptions=True,
        )
        deleted = sum(1 for r in results if r is True)
        summary = DeleteSummary(deleted=deleted, failed=len(results) - deleted)
        logger.info(
            "Bulk delete user_id=%s deleted=%d failed=%d",
            user_id,
            summary.deleted,
            summary.failed,
        )
        return summary

    async def cleanup_malicious(self) -> int:
        """Remove every stored object that is malicious or blocklisted by name.

        Returns:
            Number of objects removed.
        """
        stored = await self._store.list_files()
        targets = [
            item
            for item in stored
            if "malicious" in item.verdict.lower()
            or self._resolver.is_blocklisted(item.original_name)
        ]
        if not targets:
            logger.info("No malicious files found during cleanup")
            return 0

        for item in targets:
            logger.info("Removing malicious file %s (%s)", item.original_name, item.verdict)
        results = await asyncio.gather(
            *(self._store.delete(item.file_id) for item in targets),
            return_exceptions=True,
        )
        removed = sum(1 for r in results if r is True)
        logger.info("Deleted %d out of %d malicious files", removed, len(targets))
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _owned(self, user_id: str | None, file_id: str) -> StoredFile:
        if not user_id:
            raise MissingIdentityError("User authentication required")
        stored = await self._store.get(file_id)
        if stored is None:
            raise StoredFileNotFoundError(f"File {file_id} not found")
        if stored.user_id != user_id:
            raise PermissionDeniedError("You do not have permission to access this file")
        return stored

    def _to_entry(self, stored: StoredFile) -> FileEntry:
        verdict = (stored.verdict or Verdict.UNKNOWN.value).lower()
        if self._resolver.is_blocklisted(stored.original_name):
            logger.info(
                "Known malicious test file detected: %s; overriding verdict",
                stored.original_name,
            )
            verdict = Verdict.MALICIOUS.value
        return FileEntry(
            file_id=stored.file_id,
            original_name=stored.original_name,
            url=None if verdict == Verdict.MALICIOUS.value else stored.url,
            verdict=verdict,
            user_id=stored.user_id,
        )
