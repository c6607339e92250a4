import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from PIL import Image

from ..ports.file_repo import ArtifactRole, FileCategory, FileRecord
from .deduplicator import compute_checksum
from .persistence_writer import PersistenceWriter, UploadJournal
from .upload_types import UploadOptions
from ...core.config import PipelineConfig
from ...document_utils import extract_document_metadata
from ...exceptions import FileProcessingError
from ...media_utils import create_thumbnail_bytes, optimize_for_web, read_image_metadata
from ...mime_utils import is_processable_image
from ...utils import utc_now

logger = logging.getLogger(__name__)

# Errors Pillow raises for bytes it cannot decode or refuses to process
IMAGE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


@dataclass
class VariantResult:
    processed_files: List[FileRecord] = field(default_factory=list)
    thumbnails: List[FileRecord] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VariantGenerator:
    """Derives metadata and variant artifacts from an original upload.

    describe() runs before the original is written; an image that cannot be
    decoded fails the upload there. generate() runs once the original row
    exists, and a single thumbnail size (or the compressed copy) that fails
    to render is skipped and reported in the returned metadata instead.
    """

    writer: PersistenceWriter
    config: PipelineConfig

    def wants_image_branch(self, mime_type: str, options: UploadOptions) -> bool:
        return options.process_images and is_processable_image(mime_type)

    async def describe(self, data: bytes, mime_type: str, category: FileCategory, options: UploadOptions) -> Dict[str, Any]:
        if self.wants_image_branch(mime_type, options):
            try:
                info = await asyncio.to_thread(read_image_metadata, data)
            except IMAGE_ERRORS as e:
                logger.error(f"Image processing failed: {e}")
                raise FileProcessingError("Image processing failed", details={"error": str(e)}) from e
            return {
                "dimensions": {"width": info["width"], "height": info["height"]},
                "format": info["format"],
                "mode": info["mode"],
                "hasAlpha": info["hasAlpha"],
                "density": info["density"],
                "frames": info["frames"],
                "exifData": info["exif"],
            }
        if category is FileCategory.DOCUMENT:
            try:
                return await asyncio.to_thread(extract_document_metadata, data, mime_type)
            except Exception as e:
                # Document metadata is best-effort
                logger.warning(f"Document metadata extraction failed for {mime_type}: {e}")
                return {"extractionError": str(e)}
        return {}

    async def generate(self, data: bytes, original: FileRecord, options: UploadOptions,
                       journal: Optional[UploadJournal] = None) -> VariantResult:
        result = VariantResult()
        if not self.wants_image_branch(original.mime_type, options):
            return result

        started = time.monotonic()
        stem = os.path.splitext(original.original_name)[0] or "image"

        if options.generate_thumbnails:
            sizes = list(self.config.thumbnail_sizes) if options.thumbnail_sizes is None else options.thumbnail_sizes
            thumbnail_errors = []
            for size in dict.fromkeys(sizes):
                try:
                    if size <= 0:
                        raise ValueError(f"invalid thumbnail size {size}")
                    thumb, width, height = await asyncio.to_thread(
                        create_thumbnail_bytes, data, size, self.config.thumbnail_quality
                    )
                except IMAGE_ERRORS as e:
                    logger.warning(f"Thumbnail {size} failed for {original.id}: {e}")
                    thumbnail_errors.append({"size": size, "error": str(e)})
                    continue
                record = await self._persist_variant(
                    original, ArtifactRole.thumbnail(size), thumb, f"thumb_{size}_{stem}.jpg", "thumbnails",
                    {"thumbnailSize": size, "width": width, "height": height, "quality": self.config.thumbnail_quality},
                    journal,
                )
                result.thumbnails.append(record)
            if thumbnail_errors:
                result.metadata["thumbnailErrors"] = thumbnail_errors

        if options.compress:
            quality = max(1, min(100, options.quality or self.config.compression_quality))
            try:
                compressed, width, height = await asyncio.to_thread(
                    optimize_for_web, data, quality, self.config.max_image_dimension
                )
            except IMAGE_ERRORS as e:
                logger.warning(f"Compressed copy failed for {original.id}: {e}")
                result.metadata["compressionError"] = str(e)
            else:
                record = await self._persist_variant(
                    original, ArtifactRole.compressed(), compressed, f"compressed_{stem}.jpg", "compressed",
                    {
                        "compressionQuality": quality,
                        "width": width,
                        "height": height,
                        "originalSize": len(data),
                        "compressionRatio": round(len(compressed) / len(data), 4),
                    },
                    journal,
                )
                result.processed_files.append(record)

        result.metadata["variantProcessingTime"] = round((time.monotonic() - started) * 1000)
        return result

    async def _persist_variant(self, original: FileRecord, role: ArtifactRole, data: bytes, name: str,
                               subdirectory: str, metadata: Dict[str, Any],
                               journal: Optional[UploadJournal]) -> FileRecord:
        if role.size is not None:
            artifact_id = f"{original.id}_thumb_{role.size}"
        else:
            artifact_id = f"{original.id}_{role.kind.value}"
        checksum = await compute_checksum(data)
        path = await self.writer.save(data, name, subdirectory, artifact_id=artifact_id, journal=journal)
        record = FileRecord(
            id=artifact_id,
            original_name=name,
            stored_name=os.path.basename(path),
            storage_path=path,
            size_bytes=len(data),
            mime_type="image/jpeg",
            category=FileCategory.IMAGE,
            checksum=checksum,
            uploaded_by=original.uploaded_by,
            uploaded_at=utc_now(),
            role=role,
            tags=[role.tag],
            parent_id=original.id,
            is_public=original.is_public,
            metadata=metadata,
        )
        return await self.writer.create_record(record, journal)
