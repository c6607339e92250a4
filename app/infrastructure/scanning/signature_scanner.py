import asyncio
import hashlib
import logging
from typing import FrozenSet, Iterable

from ...application.ports.malware_scanner import MalwareScanner, ScanResult

logger = logging.getLogger(__name__)

EICAR_SIGNATURE = b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


class SignatureScanner(MalwareScanner):
    """Flags the EICAR test string and payloads whose SHA-256 is blocklisted."""

    def __init__(self, blocked_checksums: Iterable[str] = ()) -> None:
        self.blocked: FrozenSet[str] = frozenset(c.lower() for c in blocked_checksums)

    def _scan(self, data: bytes) -> ScanResult:
        if EICAR_SIGNATURE in data:
            return ScanResult(clean=False, threat="EICAR-Test-File")
        if self.blocked and hashlib.sha256(data).hexdigest() in self.blocked:
            return ScanResult(clean=False, threat="Blocklisted-Checksum")
        return ScanResult(clean=True)

    async def scan(self, data: bytes, filename: str) -> ScanResult:
        result = await asyncio.to_thread(self._scan, data)
        if not result.clean:
            logger.warning(f"Malware scan flagged {filename!r}: {result.threat}")
        return result
