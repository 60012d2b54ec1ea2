"""Application configuration via Pydantic Settings.

All configuration is driven by environment variables. Missing required variables
raise a ``ValidationError`` at startup so misconfigured deployments fail fast.

Usage::

    from vtguard.config import get_settings

    settings = get_settings()
    print(settings.poll_interval_seconds)

The ``get_settings`` function is cached with ``functools.lru_cache``. To override
settings in tests, patch ``vtguard.config.get_settings`` or set the relevant
environment variables before calling ``get_settings()`` for the first time.
"""
from __future__ import annotations

import functools
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from vtguard.core.blocklist import DEFAULT_MARKERS


class Settings(BaseSettings):
    """vtguard application settings.

    Environment variables are read case-insensitively. A ``.env`` file in the
    working directory is loaded automatically when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Remote scanning service
    vt_api_key: str = Field(
        ...,
        min_length=1,
        description="VirusTotal API key sent as the x-apikey header",
    )
    vt_base_url: str = Field(
        default="https://www.virustotal.com/api/v3",
        description="Base URL of the VirusTotal v3 REST API",
    )
    vt_http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout for calls to the scanning service",
    )

    # Polling
    poll_interval_seconds: float = Field(
        default=8.0,
        ge=8.0,
        description="Wait between analysis polls (free tier allows 4 requests/minute)",
    )
    max_poll_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Maximum analysis lookups per resolve call",
    )
    resolve_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Optional hard deadline for one resolve call",
    )
    scan_failure_verdict: Literal["clean", "unknown", "malicious"] = Field(
        default="clean",
        description=(
            "Verdict applied when the scanner errors or times out. 'clean' is "
            "fail-open; set 'malicious' for fail-closed deployments"
        ),
    )
    blocklist_markers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MARKERS),
        description="Filename substrings blocked without a remote scan",
    )

    # Upload gateway
    max_upload_bytes: int = Field(
        default=25 * 1024 * 1024,
        ge=1,
        description="Largest accepted upload in bytes",
    )
    allowed_extensions: list[str] = Field(
        default_factory=lambda: ["pdf", "png", "jpg", "jpeg", "docx", "txt", "zip", "exe"],
        description="File extensions accepted by the upload endpoint",
    )
    storage_dir: str = Field(
        default="/tmp/vtguard/files",
        description="Root directory of the local blob store",
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL used to build download links for stored files",
    )

    cleanup_interval_seconds: int = Field(
        default=3600,
        ge=0,
        description="Interval of the background sweep removing malicious files (0 disables it)",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment: development, staging, or production",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (never set True in production)",
    )

    @field_validator("vt_base_url", "public_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base URLs must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("allowed_extensions")
    @classmethod
    def normalise_extensions(cls, v: list[str]) -> list[str]:
        return [ext.lower().lstrip(".") for ext in v]


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    The first call reads environment variables (and ``.env``). Subsequent calls
    return the cached instance. Clear the cache with ``get_settings.cache_clear()``
    between tests.
    """
    return Settings()
