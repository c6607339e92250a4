import asyncio
import logging
import os
import shutil
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import aiofiles
import aiofiles.os

from .file_pipeline import FilePipeline
from .upload_types import FileProcessingResult, UploadedFile, UploadOptions
from ...core.config import PipelineConfig
from ...exceptions import FileAccessDeniedError, FileRecordNotFoundError, FileValidationError
from ...mime_utils import normalize_mime_type
from ...utils import format_file_size, utc_now

logger = logging.getLogger(__name__)

CHUNKS_SUBDIR = "chunks"


@dataclass
class ChunkSession:
    session_id: str
    user_id: str
    file_name: str
    file_size: int
    mime_type: Optional[str]
    total_chunks: int
    directory: str
    options: UploadOptions = field(default_factory=UploadOptions)
    created_at: datetime = field(default_factory=utc_now)
    part_sizes: Dict[int, int] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def received_chunks(self) -> List[int]:
        return sorted(self.part_sizes)

    @property
    def bytes_received(self) -> int:
        return sum(self.part_sizes.values())

    @property
    def complete(self) -> bool:
        return len(self.part_sizes) == self.total_chunks


@dataclass
class ChunkUploadStatus:
    session_id: str
    received_chunks: List[int]
    total_chunks: int
    complete: bool
    result: Optional[FileProcessingResult] = None


class ChunkSessionStore:
    """Open chunked-upload sessions of this process, keyed by session id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ChunkSession] = {}

    def add(self, session: ChunkSession) -> None:
        self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[ChunkSession]:
        return self._sessions.get(session_id)

    def pop(self, session_id: str) -> Optional[ChunkSession]:
        return self._sessions.pop(session_id, None)

    def all(self) -> List[ChunkSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass
class ChunkedUploadService:
    """Collects an upload in numbered parts under the temp directory.

    When the last part arrives the parts are joined in order and the result
    goes through FilePipeline.upload like any single-request upload.
    """

    config: PipelineConfig
    pipeline: FilePipeline
    sessions: ChunkSessionStore

    def _chunk_root(self) -> str:
        return os.path.join(self.config.temp_root, CHUNKS_SUBDIR)

    async def init_session(self, file_name: str, file_size: int, mime_type: Optional[str], total_chunks: int,
                           user_id: str, options: Optional[UploadOptions] = None) -> ChunkSession:
        errors = []
        if file_size <= 0:
            errors.append("File size must be positive")
        elif file_size > self.config.policy.max_size:
            errors.append(
                f"File size {format_file_size(file_size)} exceeds maximum allowed size of {format_file_size(self.config.policy.max_size)}"
            )
        if total_chunks < 1:
            errors.append("Total chunks must be at least 1")
        elif file_size > 0 and total_chunks > file_size:
            errors.append("More chunks than bytes")
        declared = normalize_mime_type(mime_type)
        if declared and declared not in self.config.policy.allowed_mime_types:
            errors.append(f"File type {declared} is not allowed")
        if errors:
            raise FileValidationError(errors, details={"fileName": file_name})

        await self._expire_sessions(utc_now() - self._ttl())
        open_sessions = sum(1 for s in self.sessions.all() if s.user_id == user_id)
        if open_sessions >= self.config.max_chunk_sessions_per_user:
            raise FileValidationError(
                [f"Too many open upload sessions: maximum {self.config.max_chunk_sessions_per_user} per user"],
                details={"fileName": file_name},
            )

        session_id = str(uuid.uuid4())
        directory = os.path.join(self._chunk_root(), session_id)
        await aiofiles.os.makedirs(directory, exist_ok=True)
        session = ChunkSession(
            session_id=session_id,
            user_id=user_id,
            file_name=file_name,
            file_size=file_size,
            mime_type=declared,
            total_chunks=total_chunks,
            directory=directory,
            options=options or UploadOptions(),
        )
        self.sessions.add(session)
        logger.info(f"Chunked upload session {session_id} opened by {user_id} for {file_name!r} ({total_chunks} chunks)")
        return session

    def _part_path(self, session: ChunkSession, index: int) -> str:
        return os.path.join(session.directory, f"{index:06d}.part")

    async def upload_chunk(self, session_id: str, chunk_index: int, data: bytes, user_id: str) -> ChunkUploadStatus:
        session = self.sessions.get(session_id)
        if session is None:
            raise FileRecordNotFoundError("Upload session not found", details={"session_id": session_id})
        if session.user_id != user_id:
            raise FileAccessDeniedError("Access denied", details={"session_id": session_id})
        if not 0 <= chunk_index < session.total_chunks:
            raise FileValidationError([f"Chunk index {chunk_index} out of range"])
        if not data:
            raise FileValidationError(["Chunk is empty"])

        async with session.lock:
            if self.sessions.get(session_id) is not session:
                raise FileRecordNotFoundError("Upload session not found", details={"session_id": session_id})

            previous = session.part_sizes.get(chunk_index, 0)
            if session.bytes_received - previous + len(data) > session.file_size:
                await self._discard(session)
                raise FileValidationError(["Received more bytes than the declared file size"])

            async with aiofiles.open(self._part_path(session, chunk_index), "wb") as f:
                await f.write(data)
            session.part_sizes[chunk_index] = len(data)

            if not session.complete:
                return ChunkUploadStatus(session_id, session.received_chunks, session.total_chunks, False)

            try:
                assembled = await self._assemble(session)
                if len(assembled) != session.file_size:
                    raise FileValidationError(
                        [f"Assembled size {len(assembled)} does not match declared size {session.file_size}"]
                    )
                result = await self.pipeline.upload(
                    UploadedFile(original_name=session.file_name, mime_type=session.mime_type, data=assembled),
                    user_id,
                    session.options,
                )
            finally:
                await self._discard(session)

        logger.info(f"Chunked upload session {session_id} completed as {result.original_file.id}")
        return ChunkUploadStatus(session_id, list(range(session.total_chunks)), session.total_chunks, True, result)

    async def _assemble(self, session: ChunkSession) -> bytes:
        parts = []
        for index in range(session.total_chunks):
            async with aiofiles.open(self._part_path(session, index), "rb") as f:
                parts.append(await f.read())
        return b"".join(parts)

    async def _discard(self, session: ChunkSession) -> None:
        self.sessions.pop(session.session_id)
        await asyncio.to_thread(shutil.rmtree, session.directory, True)

    def _ttl(self) -> timedelta:
        return timedelta(hours=self.config.chunk_session_ttl_hours)

    async def _expire_sessions(self, cutoff: datetime) -> int:
        removed = 0
        for session in self.sessions.all():
            if session.created_at < cutoff and not session.lock.locked():
                await self._discard(session)
                removed += 1
        return removed

    async def cleanup_stale(self, max_age: Optional[timedelta] = None) -> int:
        """Drop sessions (and orphaned session directories) older than max_age."""
        max_age = max_age or self._ttl()
        removed = await self._expire_sessions(utc_now() - max_age)

        root = self._chunk_root()
        if await aiofiles.os.path.isdir(root):
            cutoff_ts = time.time() - max_age.total_seconds()
            for entry in await aiofiles.os.listdir(root):
                path = os.path.join(root, entry)
                if self.sessions.get(entry) is None and await aiofiles.os.path.getmtime(path) < cutoff_ts:
                    await asyncio.to_thread(shutil.rmtree, path, True)
                    removed += 1
        if removed:
            logger.info(f"Removed {removed} stale chunked upload sessions")
        return removed
