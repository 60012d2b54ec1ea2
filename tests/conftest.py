"""Shared pytest configuration and fixtures for vtguard tests.

Sets required environment variables before any vtguard module is imported,
so that ``vtguard.config.get_settings()`` succeeds in the test environment.
"""
from __future__ import annotations

import os

# Set required env vars before any vtguard module is imported
os.environ.setdefault("VT_API_KEY", "test-vt-api-key")
os.environ.setdefault("STORAGE_DIR", "/tmp/vtguard-test/files")
os.environ.setdefault("CLEANUP_INTERVAL_SECONDS", "0")
