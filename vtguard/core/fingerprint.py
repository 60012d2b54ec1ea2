"""Content fingerprinting for uploaded files.

A fingerprint is the lowercase SHA-256 hex digest of the raw file bytes.  It
is the deduplication key for remote lookups and, when the remote service
cannot issue an analysis ID, doubles as a synthetic scan handle.
"""

from __future__ import annotations

import hashlib
import re

_FINGERPRINT_RE = re.compile(r"[0-9a-fA-F]{64}")


def fingerprint(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*.

    Any byte sequence, including the empty one, yields a valid fingerprint.
    """
    return hashlib.sha256(data).hexdigest()


def is_fingerprint(value: str) -> bool:
    """Return ``True`` when *value* is shaped like a fingerprint (64 hex chars)."""
    return bool(_FINGERPRINT_RE.fullmatch(value))
