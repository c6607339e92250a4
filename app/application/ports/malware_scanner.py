from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass
class ScanResult:
    clean: bool
    threat: Optional[str] = None


class MalwareScanner(Protocol):
    async def scan(self, data: bytes, filename: str) -> ScanResult:
        ...
