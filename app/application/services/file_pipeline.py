import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..ports.audit_logger import AuditLogger
from ..ports.file_repo import FileRecord, FileRepository
from .deduplicator import ChecksumLockRegistry, Deduplicator, compute_checksum
from .file_validator import FileValidator
from .persistence_writer import PersistenceWriter, UploadJournal
from .upload_types import BulkUploadItem, BulkUploadResult, FileProcessingResult, UploadedFile, UploadOptions
from .variant_generator import VariantGenerator
from ...core.config import PipelineConfig
from ...exceptions import ErrorCodes, FileProcessingError, FileServiceError, FileValidationError
from ...mime_utils import category_for, subdirectory_for
from ...utils import chunked, generate_file_id, utc_now

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return round((time.monotonic() - started) * 1000)


@dataclass
class FilePipeline:
    """Validate -> deduplicate -> write original -> generate variants.

    Nothing is written before validation passes. Once writing starts, any
    failure or cancellation removes every file and row the upload created
    before the error propagates.
    """

    config: PipelineConfig
    validator: FileValidator
    deduplicator: Deduplicator
    variant_generator: VariantGenerator
    writer: PersistenceWriter
    file_repo: FileRepository
    checksum_locks: ChecksumLockRegistry
    audit_logger: Optional[AuditLogger] = None

    async def upload(self, file: UploadedFile, user_id: str, options: Optional[UploadOptions] = None) -> FileProcessingResult:
        options = options or UploadOptions()
        started = time.monotonic()

        validation = await self.validator.validate(file.data, file.mime_type, file.original_name, user_id)
        if not validation.is_valid:
            logger.info(f"Rejected upload {file.original_name!r} from user {user_id}: {validation.errors}")
            self._audit("upload", user_id, None, False, {"fileName": file.original_name, "errors": validation.errors})
            raise FileValidationError(validation.errors, details={"fileName": file.original_name})

        checksum = await compute_checksum(file.data)
        if not options.prevent_duplicates:
            return await self._ingest(file, validation.detected_mime_type, checksum, user_id, options, started)

        async with self.checksum_locks.hold(checksum):
            existing = await self.deduplicator.find_duplicate(checksum, user_id)
            if existing is not None:
                return await self._duplicate_result(existing, file, user_id)
            return await self._ingest(file, validation.detected_mime_type, checksum, user_id, options, started)

    async def upload_many(self, files: Sequence[UploadedFile], user_id: str, options: Optional[UploadOptions] = None) -> BulkUploadResult:
        """Upload in sequential batches; uploads inside a batch run concurrently.

        A failing item is reported in its own BulkUploadItem and never cancels
        the others.
        """
        options = options or UploadOptions()
        if not files:
            raise FileValidationError(["No files provided"])
        if len(files) > self.config.max_files_per_request:
            raise FileValidationError([f"Too many files: maximum {self.config.max_files_per_request} per request"])

        concurrency = max(1, options.concurrency or self.config.bulk_concurrency)
        items: List[BulkUploadItem] = []
        for batch in chunked(list(files), concurrency):
            outcomes = await asyncio.gather(
                *(self.upload(f, user_id, options) for f in batch),
                return_exceptions=True,
            )
            for f, outcome in zip(batch, outcomes):
                items.append(self._bulk_item(f, outcome))

        result = BulkUploadResult(items=items)
        logger.info(f"Bulk upload by user {user_id} finished: {result.summary}")
        return result

    def _bulk_item(self, file: UploadedFile, outcome) -> BulkUploadItem:
        if isinstance(outcome, FileProcessingResult):
            return BulkUploadItem(original_name=file.original_name, result=outcome)
        if isinstance(outcome, FileServiceError):
            return BulkUploadItem(original_name=file.original_name, error=outcome.message, error_code=outcome.code)
        if isinstance(outcome, (Exception, asyncio.CancelledError)):
            logger.error(f"Upload of {file.original_name!r} failed: {outcome!r}")
            return BulkUploadItem(
                original_name=file.original_name,
                error=str(outcome) or outcome.__class__.__name__,
                error_code=ErrorCodes.FILE_PROCESSING_ERROR,
            )
        raise outcome

    async def _ingest(self, file: UploadedFile, mime_type: str, checksum: str, user_id: str,
                      options: UploadOptions, started: float) -> FileProcessingResult:
        category = options.category or category_for(mime_type)
        file_id = generate_file_id()
        journal = UploadJournal()
        try:
            metadata = await self.variant_generator.describe(file.data, mime_type, category, options)
            path = await self.writer.save(
                file.data, file.original_name, subdirectory_for(category), artifact_id=file_id, journal=journal
            )
            original = await self.writer.create_record(FileRecord(
                id=file_id,
                original_name=file.original_name,
                stored_name=os.path.basename(path),
                storage_path=path,
                size_bytes=file.size_bytes,
                mime_type=mime_type,
                category=category,
                checksum=checksum,
                uploaded_by=user_id,
                uploaded_at=utc_now(),
                tags=list(options.tags),
                description=options.description,
                is_public=options.is_public,
                metadata={"originalSize": file.size_bytes, **metadata, "processingTime": _elapsed_ms(started)},
            ), journal)

            variants = await self.variant_generator.generate(file.data, original, options, journal)
            if variants.metadata:
                original = await self.file_repo.update(
                    original.id,
                    metadata={**original.metadata, **variants.metadata, "processingTime": _elapsed_ms(started)},
                )
        except (Exception, asyncio.CancelledError) as e:
            await asyncio.shield(self.writer.rollback(journal))
            if isinstance(e, (FileServiceError, asyncio.CancelledError)):
                raise
            logger.exception(f"File upload failed for {file.original_name!r}")
            raise FileProcessingError("File upload failed", details={"error": str(e)}) from e

        await self._log_access(original.id, user_id, "upload")
        self._audit("upload", user_id, original.id, True, {
            "fileName": file.original_name,
            "fileSize": file.size_bytes,
            "mimeType": mime_type,
        })
        logger.info(
            f"File upload completed: {original.id} ({file.original_name!r}) in {_elapsed_ms(started)}ms, "
            f"{len(variants.thumbnails)} thumbnails, {len(variants.processed_files)} processed"
        )
        return FileProcessingResult(
            original_file=original,
            processed_files=variants.processed_files,
            thumbnails=variants.thumbnails,
            metadata={**original.metadata, "fileSize": file.size_bytes, "mimeType": mime_type, "checksum": checksum},
        )

    async def _duplicate_result(self, existing: FileRecord, file: UploadedFile, user_id: str) -> FileProcessingResult:
        variants = await self.file_repo.find_variants(existing.id)
        logger.info(f"Duplicate upload of {file.original_name!r} by user {user_id} matched {existing.id}")
        self._audit("upload_duplicate", user_id, existing.id, True, {"fileName": file.original_name})
        return FileProcessingResult(
            original_file=existing,
            processed_files=[v for v in variants if v.role.tag == "compressed"],
            thumbnails=sorted((v for v in variants if v.role.tag == "thumbnail"), key=lambda v: v.role.size),
            metadata={
                **existing.metadata,
                "fileSize": existing.size_bytes,
                "mimeType": existing.mime_type,
                "checksum": existing.checksum,
            },
            duplicate=True,
        )

    async def _log_access(self, file_id: str, user_id: str, action: str) -> None:
        try:
            await self.file_repo.log_access(file_id, user_id, action)
        except Exception as e:
            logger.warning(f"Failed to log file access for {file_id}: {e}")

    def _audit(self, action: str, user_id: str, file_id: Optional[str], success: bool, details: dict) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(f"file_{action}", user_id, entity_id=file_id, success=success, details=details)
