import asyncio
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os

from ...application.ports.storage_repo import StorageRepository
from ...exceptions import FileStorageError

logger = logging.getLogger(__name__)


class LocalStorageRepository(StorageRepository):
    """Stores bytes on the local filesystem under a single upload root.

    Every path handed in or out is relative to that root; anything that
    resolves outside of it is rejected.
    """

    def __init__(self, upload_root: str, backup_root: Optional[str] = None) -> None:
        self.root = Path(upload_root).resolve()
        self.backup_root = Path(backup_root).resolve() if backup_root else self.root.parent / "backups"

    def _resolve(self, relative: str, root: Optional[Path] = None) -> Path:
        base = root or self.root
        candidate = (base / relative).resolve()
        if candidate != base and base not in candidate.parents:
            raise FileStorageError(
                "Storage path escapes the storage root",
                details={"path": relative},
            )
        return candidate

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    async def save_bytes(self, subdir: str, filename: str, data: bytes) -> str:
        dest_dir = self._resolve(subdir) if subdir else self.root
        dest = self._resolve(os.path.join(subdir or "", filename))
        try:
            await aiofiles.os.makedirs(dest_dir, exist_ok=True)
            async with aiofiles.open(dest, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise FileStorageError(f"Failed to write file: {e}", details={"path": self._relative(dest)}) from e
        return self._relative(dest)

    async def read_bytes(self, storage_path: str) -> bytes:
        path = self._resolve(storage_path)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise FileStorageError(f"Failed to read file: {e}", details={"path": storage_path}) from e

    async def open_stream(self, storage_path: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        path = self._resolve(storage_path)
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    async def exists(self, storage_path: str) -> bool:
        return await aiofiles.os.path.isfile(self._resolve(storage_path))

    async def size(self, storage_path: str) -> Optional[int]:
        try:
            stat = await aiofiles.os.stat(self._resolve(storage_path))
        except FileNotFoundError:
            return None
        return stat.st_size

    async def delete(self, storage_path: str) -> bool:
        path = self._resolve(storage_path)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise FileStorageError(f"Failed to delete file: {e}", details={"path": storage_path}) from e
        return True

    async def move(self, storage_path: str, subdir: str) -> str:
        src = self._resolve(storage_path)
        dest_dir = self._resolve(subdir)
        dest = self._resolve(os.path.join(subdir, src.name))
        if dest == src:
            return storage_path
        if await aiofiles.os.path.exists(dest):
            raise FileStorageError("Destination already exists", details={"path": self._relative(dest)})
        try:
            await aiofiles.os.makedirs(dest_dir, exist_ok=True)
            await aiofiles.os.rename(src, dest)
        except OSError as e:
            raise FileStorageError(f"Failed to move file: {e}", details={"path": storage_path}) from e
        return self._relative(dest)

    async def copy(self, storage_path: str, subdir: str, filename: str) -> str:
        src = self._resolve(storage_path)
        dest_dir = self._resolve(subdir)
        dest = self._resolve(os.path.join(subdir, filename))
        try:
            await aiofiles.os.makedirs(dest_dir, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, src, dest)
        except OSError as e:
            raise FileStorageError(f"Failed to copy file: {e}", details={"path": storage_path}) from e
        return self._relative(dest)

    async def backup(self, storage_path: str, location: Optional[str] = None) -> str:
        """Copy a stored file under the backup root; returns the backup's absolute path."""
        src = self._resolve(storage_path)
        backup_root = self.backup_root
        dest_dir = self._resolve(location, backup_root) if location else backup_root
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        dest = dest_dir / f"{stamp}_{src.name}"
        try:
            await aiofiles.os.makedirs(dest_dir, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, src, dest)
        except OSError as e:
            raise FileStorageError(f"Failed to back up file: {e}", details={"path": storage_path}) from e
        logger.info(f"Backed up {storage_path} to {dest}")
        return str(dest)
