"""Pydantic schemas for the upload and file-management API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class FileOut(BaseModel):
    """Read schema for an uploaded or stored file."""

    model_config = {"from_attributes": True}

    id: str = Field(..., description="Public file identifier ({uuid}.{ext})")
    original_name: str
    url: str | None = Field(
        default=None,
        description="Download URL; null for malicious files, which are never stored",
    )
    verdict: Literal["clean", "malicious", "unknown"]
    user_id: str
    scan_handle: str | None = Field(
        default=None,
        description="Remote analysis ID or SHA-256 used to obtain the verdict",
    )


class DeleteResponse(BaseModel):
    """Response for a single-file delete."""

    success: bool = True
    message: str = "File deleted successfully"


class BulkDeleteResponse(BaseModel):
    """Response for deleting all of a caller's files."""

    success: bool = True
    message: str
    deleted_count: int = Field(ge=0)
    failed_count: int = Field(default=0, ge=0)
