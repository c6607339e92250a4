import asyncio
import hashlib
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

from ..ports.file_repo import FileRecord, FileRepository

# Buffers above this size are hashed off the event loop
THREADED_HASH_THRESHOLD = 1024 * 1024


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


async def compute_checksum(data: bytes) -> str:
    if len(data) > THREADED_HASH_THRESHOLD:
        return await asyncio.to_thread(sha256_hex, data)
    return sha256_hex(data)


class ChecksumLockRegistry:
    """Per-checksum asyncio locks, created on demand and dropped when idle.

    Serialises the lookup-then-insert window of uploads that carry the same
    content inside one process. Separate processes are not coordinated.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, checksum: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(checksum, asyncio.Lock())
        self._waiters[checksum] = self._waiters.get(checksum, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[checksum] -= 1
            if self._waiters[checksum] == 0:
                del self._waiters[checksum]
                del self._locks[checksum]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class Deduplicator:
    file_repo: FileRepository

    async def find_duplicate(self, checksum: str, user_id: Optional[str] = None) -> Optional[FileRecord]:
        """Active original with the same content, if any.

        With a user id only that user's own uploads count, so a duplicate
        never hands back someone else's record.
        """
        return await self.file_repo.find_by_checksum(checksum, uploaded_by=user_id)
