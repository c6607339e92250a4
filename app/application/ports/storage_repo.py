from typing import AsyncIterator, Optional, Protocol


class StorageRepository(Protocol):
    """Byte storage addressed by paths relative to the storage root."""

    async def save_bytes(self, subdir: str, filename: str, data: bytes) -> str:
        ...

    async def read_bytes(self, storage_path: str) -> bytes:
        ...

    def open_stream(self, storage_path: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        ...

    async def exists(self, storage_path: str) -> bool:
        ...

    async def size(self, storage_path: str) -> Optional[int]:
        ...

    async def delete(self, storage_path: str) -> bool:
        ...

    async def move(self, storage_path: str, subdir: str) -> str:
        ...

    async def copy(self, storage_path: str, subdir: str, filename: str) -> str:
        ...

    async def backup(self, storage_path: str, location: Optional[str] = None) -> str:
        ...
