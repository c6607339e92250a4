import asyncio
import gzip
import logging
import posixpath
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from ..ports.audit_logger import AuditLogger
from ..ports.file_repo import ArtifactKind, ArtifactRole, FileRecord, FileRepository, FileSearchCriteria
from ..ports.storage_repo import StorageRepository
from .access_policy import AccessPolicy
from .deduplicator import compute_checksum
from .persistence_writer import CascadeDeleteResult, PersistenceWriter, stored_name_for
from .quota_service import QuotaService, QuotaStatus
from ...core.config import PipelineConfig
from ...exceptions import FileRecordNotFoundError, FileServiceError, FileValidationError
from ...media_utils import recompress_image
from ...mime_utils import is_processable_image
from ...utils import generate_file_id, utc_now

logger = logging.getLogger(__name__)

BULK_OPERATIONS = ("delete", "move", "copy", "compress", "backup")


@dataclass
class FileContent:
    stream: AsyncIterator[bytes]
    metadata: FileRecord
    content_length: int
    content_type: str


@dataclass
class BulkOperation:
    file_ids: List[str]
    operation: str
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BulkOperationResult:
    success: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class FileStats:
    total_files: int
    total_size: int
    files_by_category: Dict[str, int]
    files_by_type: Dict[str, int]
    storage_usage: Dict[str, Any]


@dataclass
class FileService:
    """Reads, deletes and bulk maintenance for stored files."""

    config: PipelineConfig
    file_repo: FileRepository
    storage: StorageRepository
    writer: PersistenceWriter
    access_policy: AccessPolicy
    quota_service: QuotaService
    audit_logger: Optional[AuditLogger] = None

    async def _load(self, file_id: str) -> FileRecord:
        record = await self.file_repo.get_by_id(file_id)
        if record is None:
            raise FileRecordNotFoundError("File not found", details={"file_id": file_id})
        return record

    async def _log_access(self, file_id: str, user_id: str, action: str) -> None:
        try:
            await self.file_repo.log_access(file_id, user_id, action)
        except Exception as e:
            logger.warning(f"Failed to log file access for {file_id}: {e}")

    def _audit(self, action: str, user_id: str, file_id: Optional[str], details: Optional[dict] = None) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(f"file_{action}", user_id, entity_id=file_id, details=details)

    async def get_file(self, file_id: str, user_id: str) -> FileRecord:
        record = await self._load(file_id)
        await self.access_policy.check(record, user_id, "read")
        await self._log_access(file_id, user_id, "read")
        return record

    async def get_variants(self, file_id: str) -> List[FileRecord]:
        return await self.file_repo.find_variants(file_id)

    async def get_content(self, file_id: str, user_id: str, variant: str = "original", size: Optional[int] = None) -> FileContent:
        """Stream the bytes of a file or one of its variants.

        A missing variant falls back to the original. A row whose bytes are
        gone from storage is reported as not found.
        """
        try:
            kind = ArtifactKind(variant)
        except ValueError:
            raise FileValidationError([f"Unknown variant '{variant}'"])

        record = await self._load(file_id)
        await self.access_policy.check(record, user_id, "read")

        target = record
        if kind is not ArtifactKind.ORIGINAL:
            found = await self.file_repo.find_variant(record.id, kind, size)
            if found is None and size is not None and kind is ArtifactKind.THUMBNAIL:
                found = await self.file_repo.find_variant(record.id, kind)
            target = found or record

        content_length = await self.storage.size(target.storage_path)
        if content_length is None:
            logger.error(f"File {target.id} has a record but no bytes at {target.storage_path}")
            raise FileRecordNotFoundError("File content not found", details={"file_id": target.id})

        await self._log_access(file_id, user_id, "download")
        return FileContent(
            stream=self.storage.open_stream(target.storage_path),
            metadata=target,
            content_length=content_length,
            content_type=target.mime_type,
        )

    async def delete(self, file_id: str, user_id: str, permanent: bool = False) -> CascadeDeleteResult:
        record = await self._load(file_id)
        await self.access_policy.check(record, user_id, "delete")
        result = await self.writer.delete_cascade(record, user_id, permanent=permanent)
        await self._log_access(file_id, user_id, "delete")
        self._audit("delete", user_id, file_id, {"permanent": permanent, "removed": result.removed, "failed": result.failed})
        logger.info(f"Deleted file {file_id} (permanent={permanent}), {len(result.removed)} artifacts removed")
        return result

    async def bulk_operation(self, operation: BulkOperation, user_id: str) -> BulkOperationResult:
        if operation.operation not in BULK_OPERATIONS:
            raise FileValidationError([f"Unsupported operation '{operation.operation}'"])
        if not operation.file_ids:
            raise FileValidationError(["No files provided"])
        if operation.operation == "move" and not operation.options.get("destination"):
            raise FileValidationError(["Move requires a destination"])

        handler = getattr(self, f"_{operation.operation}_one")
        result = BulkOperationResult()
        for file_id in operation.file_ids:
            try:
                await handler(file_id, user_id, operation.options)
            except FileServiceError as e:
                result.failed.append({"file_id": file_id, "error": e.message})
            except Exception as e:
                logger.exception(f"Bulk {operation.operation} failed for {file_id}")
                result.failed.append({"file_id": file_id, "error": str(e)})
            else:
                result.success.append(file_id)

        self._audit(f"bulk_{operation.operation}", user_id, None, {
            "success": result.success,
            "failed": [f["file_id"] for f in result.failed],
        })
        logger.info(
            f"Bulk {operation.operation} by {user_id}: {len(result.success)} succeeded, {len(result.failed)} failed"
        )
        return result

    async def _delete_one(self, file_id: str, user_id: str, options: Dict[str, Any]) -> None:
        await self.delete(file_id, user_id, permanent=bool(options.get("permanent", False)))

    async def _move_one(self, file_id: str, user_id: str, options: Dict[str, Any]) -> None:
        record = await self._load(file_id)
        await self.access_policy.check(record, user_id, "write")
        new_path = await self.storage.move(record.storage_path, options["destination"])
        await self.file_repo.update(file_id, storage_path=new_path)

    async def _copy_one(self, file_id: str, user_id: str, options: Dict[str, Any]) -> None:
        record = await self._load(file_id)
        await self.access_policy.check(record, user_id, "read")
        quota = await self.quota_service.get_quota(user_id)
        if quota is None or not quota.allows(record.size_bytes):
            raise FileValidationError(["Copy would exceed storage quota"])

        new_id = generate_file_id()
        destination = options.get("destination") or posixpath.dirname(record.storage_path)
        new_path = await self.storage.copy(record.storage_path, destination, stored_name_for(new_id, record.original_name))
        copy = replace(
            record,
            id=new_id,
            stored_name=posixpath.basename(new_path),
            storage_path=new_path,
            uploaded_by=user_id,
            uploaded_at=utc_now(),
            role=ArtifactRole.original(),
            parent_id=None,
            tags=[t for t in record.tags if t not in ("thumbnail", "compressed")],
            metadata={**record.metadata, "copiedFrom": record.id},
        )
        try:
            await self.writer.create_record(copy)
        except (Exception, asyncio.CancelledError):
            await self.storage.delete(new_path)
            raise

    async def _compress_one(self, file_id: str, user_id: str, options: Dict[str, Any]) -> None:
        record = await self._load(file_id)
        await self.access_policy.check(record, user_id, "write")
        level = max(1, min(9, int(options.get("level", 6))))
        data = await self.storage.read_bytes(record.storage_path)
        stem, _ = posixpath.splitext(posixpath.basename(record.storage_path))
        subdir = posixpath.dirname(record.storage_path)

        if is_processable_image(record.mime_type):
            quality = max(10, 100 - level * 10)
            compressed = await asyncio.to_thread(recompress_image, data, quality)
            name, mime_type = f"{stem}_compressed.jpg", "image/jpeg"
            extra = {"compressionQuality": quality}
        else:
            compressed = await asyncio.to_thread(gzip.compress, data, level)
            name, mime_type = f"{stem}_compressed.gz", "application/gzip"
            extra = {"compressionLevel": level}

        new_path = await self.storage.save_bytes(subdir, name, compressed)
        try:
            await self.file_repo.update(
                file_id,
                storage_path=new_path,
                stored_name=posixpath.basename(new_path),
                size_bytes=len(compressed),
                mime_type=mime_type,
                checksum=await compute_checksum(compressed),
                metadata={
                    **record.metadata,
                    **extra,
                    "originalSize": len(data),
                    "compressionRatio": round(len(compressed) / len(data), 4) if data else 0,
                },
            )
        except (Exception, asyncio.CancelledError):
            if new_path != record.storage_path:
                await self.storage.delete(new_path)
            raise

        if new_path != record.storage_path:
            try:
                await self.storage.delete(record.storage_path)
            except (FileServiceError, OSError) as e:
                logger.warning(f"Could not remove pre-compression bytes of {file_id}: {e}")

    async def _backup_one(self, file_id: str, user_id: str, options: Dict[str, Any]) -> None:
        record = await self._load(file_id)
        await self.access_policy.check(record, user_id, "read")
        await self.storage.backup(record.storage_path, options.get("location"))

    async def search(self, criteria: FileSearchCriteria, user_id: str) -> Tuple[List[FileRecord], int]:
        if not await self.access_policy.can_read_all(user_id):
            criteria = replace(criteria, uploaded_by=user_id, include_public=True)
        return await self.file_repo.search(criteria)

    async def stats(self, user_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> FileStats:
        scope = None if await self.access_policy.can_read_all(user_id) else user_id
        snapshot = await self.file_repo.stats(uploaded_by=scope, start=start, end=end)
        limit = self.config.max_storage_bytes
        return FileStats(
            total_files=snapshot.total_files,
            total_size=snapshot.total_size,
            files_by_category=snapshot.files_by_category,
            files_by_type=snapshot.files_by_type,
            storage_usage={
                "used": snapshot.total_size,
                "available": max(0, limit - snapshot.total_size),
                "percentage": round(snapshot.total_size / limit * 100, 2) if limit else 0.0,
            },
        )

    async def quota(self, user_id: str) -> QuotaStatus:
        status = await self.quota_service.get_quota(user_id)
        if status is None:
            raise FileRecordNotFoundError("User not found", details={"user_id": user_id})
        return status
