"""Blob storage for files that passed scanning.

The upload pipeline persists only ``clean`` / ``unknown`` files, through the
narrow :class:`BlobStore` interface.  Production deployments plug in their
object store; :class:`LocalBlobStore` keeps files on the local filesystem so
the gateway can run standalone.

Each stored object carries metadata used by listing and cleanup: the verdict,
the original filename and the owning user ID.

Configuration (via environment variables / ``.env``)::

    STORAGE_DIR=/tmp/vtguard/files        # local storage root
    PUBLIC_BASE_URL=https://api.example.com  # base URL for download links

Usage::

    from vtguard.services.storage import LocalBlobStore

    store = LocalBlobStore(storage_dir="/tmp/files", base_url="http://localhost:8000")
    stored = await store.put("abc.pdf", data, verdict="clean", original_name="a.pdf", user_id="u1")
    print(stored.url)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)

_METADATA_SUFFIX = ".meta.json"


@dataclass(frozen=True)
class StoredFile:
    """Metadata for one stored object.

    Attributes:
        file_id: Public identifier (``"{uuid}.{ext}"``).
        original_name: Filename supplied by the uploader.
        verdict: Verdict recorded at upload time.
        user_id: Owner of the object.
        url: Download URL for the object.
        size_bytes: Object size.
    """

    file_id: str
    original_name: str
    verdict: str
    user_id: str
    url: str
    size_bytes: int = 0


class StorageError(Exception):
    """Raised when the blob store cannot complete an operation."""


class BlobStore(ABC):
    """Abstract interface for the blob storage collaborator."""

    @abstractmethod
    async def put(
        self,
        file_id: str,
        data: bytes,
        *,
        verdict: str,
        original_name: str,
        user_id: str,
    ) -> StoredFile:
        """Persist *data* under *file_id* with its metadata.

        Raises:
            StorageError: The object could not be stored.
        """

    @abstractmethod
    async def get(self, file_id: str) -> StoredFile | None:
        """Return metadata for *file_id*, or ``None`` when absent."""

    @abstractmethod
    async def read(self, file_id: str) -> bytes | None:
        """Return the stored bytes for *file_id*, or ``None`` when absent."""

    @abstractmethod
    async def list_files(self, user_id: str | None = None) -> list[StoredFile]:
        """Return stored objects, optionally restricted to *user_id*."""

    @abstractmethod
    async def delete(self, file_id: str) -> bool:
        """Delete *file_id*; return ``True`` when an object was removed."""


class LocalBlobStore(BlobStore):
    """Filesystem-backed :class:`BlobStore`.

    Object bytes are written to ``{storage_dir}/{file_id}`` and metadata to a
    JSON sidecar ``{storage_dir}/{file_id}.meta.json``.  Blocking file I/O
    runs in :func:`asyncio.to_thread`.

    Args:
        storage_dir: Root directory for stored objects.
        base_url: Base URL prepended to download paths.
    """

    def __init__(self, storage_dir: str, base_url: str) -> None:
        self._storage_dir = storage_dir
        self._base_url = base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def put(
        self,
        file_id: str,
        data: bytes,
        *,
        verdict: str,
        original_name: str,
        user_id: str,
    ) -> StoredFile:
        stored = StoredFile(
            file_id=file_id,
            original_name=original_name,
            verdict=verdict,
            user_id=user_id,
            url=f"{self._base_url}/v1/files/{file_id}",
            size_bytes=len(data),
        )
        try:
            await asyncio.to_thread(self._write, stored, data)
        except OSError as exc:
            raise StorageError(f"Could not store file_id={file_id}: {exc}") from exc

        logger.info(
            "LocalBlobStore: stored file_id=%s user_id=%s verdict=%s bytes=%d",
            file_id,
            user_id,
            verdict,
            len(data),
        )
        return stored

    async def get(self, file_id: str) -> StoredFile | None:
        return await asyncio.to_thread(self._read_metadata, self._file_path(file_id))

    async def read(self, file_id: str) -> bytes | None:
        return await asyncio.to_thread(self._read_bytes, self._file_path(file_id))

    async def list_files(self, user_id: str | None = None) -> list[StoredFile]:
        items = await asyncio.to_thread(self._scan_dir)
        if user_id is None:
            return items
        return [item for item in items if item.user_id == user_id]

    async def delete(self, file_id: str) -> bool:
        removed = await asyncio.to_thread(self._remove, file_id)
        if removed:
            logger.info("LocalBlobStore: deleted file_id=%s", file_id)
        return removed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write(self, stored: StoredFile, data: bytes) -> None:
        os.makedirs(self._storage_dir, exist_ok=True)
        path = self._file_path(stored.file_id)
        with open(path, "wb") as fh:
            fh.write(data)
        with open(path + _METADATA_SUFFIX, "w", encoding="utf-8") as fh:
            json.dump(asdict(stored), fh)

    def _read_metadata(self, path: str) -> StoredFile | None:
        meta_path = path + _METADATA_SUFFIX
        if not os.path.exists(meta_path):
            return None
        try:
            with open(meta_path, encoding="utf-8") as fh:
                return StoredFile(**json.load(fh))
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("LocalBlobStore: skipping unreadable metadata %s: %s", meta_path, exc)
            return None

    def _read_bytes(self, path: str) -> bytes | None:
        if not os.path.exists(path):
            return None
        with open(path, "rb") as fh:
            return fh.read()

    def _scan_dir(self) -> list[StoredFile]:
        if not os.path.isdir(self._storage_dir):
            return []
        items: list[StoredFile] = []
        for name in sorted(os.listdir(self._storage_dir)):
            if not name.endswith(_METADATA_SUFFIX):
                continue
            stored = self._read_metadata(
                os.path.join(self._storage_dir, name[: -len(_METADATA_SUFFIX)])
            )
            if stored is not None:
                items.append(stored)
        return items

    def _remove(self, file_id: str) -> bool:
        path = self._file_path(file_id)
        removed = False
        for target in (path, path + _METADATA_SUFFIX):
            if os.path.exists(target):
                os.remove(target)
                removed = True
        return removed

    def _file_path(self, file_id: str) -> str:
        """Return the absolute filesystem path for *file_id*."""
        # Sanitise file_id to prevent path traversal
        safe_id = "".join(c for c in file_id if c.isalnum() or c in "-_.").lstrip(".")
        return os.path.join(self._storage_dir, safe_id)
