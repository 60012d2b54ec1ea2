"""Filename fast-path blocklist.

Well-known test payloads (the EICAR anti-malware test file and its archive
variants) are blocked by name without contacting the remote service.
"""

from __future__ import annotations

from typing import Iterable

#: Filename markers matched case-insensitively as substrings.
DEFAULT_MARKERS: tuple[str, ...] = (
    "eicar",
    "eicar.txt",
    "eicar.com",
    "eicar_com.zip",
    "eicarcom2.zip",
)


def is_known_malicious(filename: str, markers: Iterable[str] = DEFAULT_MARKERS) -> bool:
    """Return ``True`` if *filename* contains any of *markers* (case-insensitive)."""
    lowered = filename.lower()
    return any(marker.lower() in lowered for marker in markers)
