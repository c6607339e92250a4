# app/schemas/files/file.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ...application.ports.file_repo import FileRecord
from ...application.services.file_service import BulkOperationResult, FileStats
from ...application.services.persistence_writer import CascadeDeleteResult
from ...application.services.quota_service import QuotaStatus
from ...application.services.upload_types import BulkUploadResult, FileProcessingResult


class FileRecordResponse(BaseModel):
    id: str
    original_name: str
    stored_name: str
    size_bytes: int
    mime_type: str
    category: str
    checksum: str
    uploaded_by: str
    uploaded_at: datetime
    role: str
    thumbnail_size: Optional[int] = None
    tags: List[str] = []
    parent_id: Optional[str] = None
    description: Optional[str] = None
    is_public: bool = False
    metadata: Dict[str, Any] = {}

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileRecordResponse":
        return cls(
            id=record.id,
            original_name=record.original_name,
            stored_name=record.stored_name,
            size_bytes=record.size_bytes,
            mime_type=record.mime_type,
            category=record.category.value,
            checksum=record.checksum,
            uploaded_by=record.uploaded_by,
            uploaded_at=record.uploaded_at,
            role=record.role.kind.value,
            thumbnail_size=record.role.size,
            tags=list(record.tags),
            parent_id=record.parent_id,
            description=record.description,
            is_public=record.is_public,
            metadata=record.metadata,
        )


class FileDetailResponse(BaseModel):
    file: FileRecordResponse
    variants: List[FileRecordResponse] = []


class FileProcessingResponse(BaseModel):
    original_file: FileRecordResponse
    processed_files: List[FileRecordResponse] = []
    thumbnails: List[FileRecordResponse] = []
    metadata: Dict[str, Any] = {}
    duplicate: bool = False

    @classmethod
    def from_result(cls, result: FileProcessingResult) -> "FileProcessingResponse":
        return cls(
            original_file=FileRecordResponse.from_record(result.original_file),
            processed_files=[FileRecordResponse.from_record(r) for r in result.processed_files],
            thumbnails=[FileRecordResponse.from_record(r) for r in result.thumbnails],
            metadata=result.metadata,
            duplicate=result.duplicate,
        )


class BulkUploadItemResponse(BaseModel):
    original_name: str
    success: bool
    result: Optional[FileProcessingResponse] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class BulkUploadResponse(BaseModel):
    items: List[BulkUploadItemResponse]
    summary: Dict[str, int]

    @classmethod
    def from_result(cls, result: BulkUploadResult) -> "BulkUploadResponse":
        return cls(
            items=[
                BulkUploadItemResponse(
                    original_name=item.original_name,
                    success=item.success,
                    result=FileProcessingResponse.from_result(item.result) if item.result else None,
                    error=item.error,
                    error_code=item.error_code,
                )
                for item in result.items
            ],
            summary=result.summary,
        )


class ChunkedUploadInitRequest(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    file_size: int = Field(gt=0)
    mime_type: Optional[str] = None
    total_chunks: int = Field(ge=1)
    tags: List[str] = []
    description: Optional[str] = Field(default=None, max_length=1000)
    is_public: bool = False
    prevent_duplicates: bool = False
    generate_thumbnails: bool = True
    compress: bool = False
    quality: Optional[int] = Field(default=None, ge=1, le=100)


class ChunkedUploadInitResponse(BaseModel):
    session_id: str
    total_chunks: int
    expires_at: datetime


class ChunkUploadResponse(BaseModel):
    session_id: str
    received_chunks: List[int]
    total_chunks: int
    complete: bool
    result: Optional[FileProcessingResponse] = None


class BulkOperationRequest(BaseModel):
    file_ids: List[str] = Field(min_length=1)
    operation: Literal["delete", "move", "copy", "compress", "backup"]
    options: Dict[str, Any] = {}


class BulkOperationResponse(BaseModel):
    success: List[str]
    failed: List[Dict[str, str]]

    @classmethod
    def from_result(cls, result: BulkOperationResult) -> "BulkOperationResponse":
        return cls(success=result.success, failed=result.failed)


class DeleteResponse(BaseModel):
    removed: List[str]
    failed: List[Dict[str, str]]

    @classmethod
    def from_result(cls, result: CascadeDeleteResult) -> "DeleteResponse":
        return cls(removed=result.removed, failed=result.failed)


class FileStatsResponse(BaseModel):
    total_files: int
    total_size: int
    files_by_category: Dict[str, int]
    files_by_type: Dict[str, int]
    storage_usage: Dict[str, Any]

    @classmethod
    def from_stats(cls, stats: FileStats) -> "FileStatsResponse":
        return cls(
            total_files=stats.total_files,
            total_size=stats.total_size,
            files_by_category=stats.files_by_category,
            files_by_type=stats.files_by_type,
            storage_usage=stats.storage_usage,
        )


class QuotaResponse(BaseModel):
    used: int
    limit: int
    available: int
    file_count: int

    @classmethod
    def from_status(cls, status: QuotaStatus) -> "QuotaResponse":
        return cls(used=status.used, limit=status.limit, available=status.available, file_count=status.file_count)
