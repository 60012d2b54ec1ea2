"""Remote scan-service clients for vtguard.

Public re-exports for the engines package. Import clients via this
module to avoid coupling to internal module layout::

    from vtguard.engines import ScanServiceClient, VirusTotalClient
"""

from vtguard.engines.base import ScanServiceClient
from vtguard.engines.virustotal import VirusTotalClient

__all__ = [
    "ScanServiceClient",
    "VirusTotalClient",
]
