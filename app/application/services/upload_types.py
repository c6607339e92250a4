from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..ports.file_repo import FileCategory, FileRecord


@dataclass
class UploadedFile:
    original_name: str
    mime_type: Optional[str]
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class UploadOptions:
    category: Optional[FileCategory] = None
    tags: List[str] = field(default_factory=list)
    description: Optional[str] = None
    is_public: bool = False
    prevent_duplicates: bool = False
    generate_thumbnails: bool = True
    process_images: bool = True
    thumbnail_sizes: Optional[List[int]] = None
    compress: bool = False
    quality: Optional[int] = None
    concurrency: Optional[int] = None


@dataclass
class FileProcessingResult:
    original_file: FileRecord
    processed_files: List[FileRecord] = field(default_factory=list)
    thumbnails: List[FileRecord] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    duplicate: bool = False

    @property
    def artifacts(self) -> List[FileRecord]:
        return [self.original_file, *self.thumbnails, *self.processed_files]


@dataclass
class BulkUploadItem:
    original_name: str
    result: Optional[FileProcessingResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.result is not None


@dataclass
class BulkUploadResult:
    items: List[BulkUploadItem]

    @property
    def summary(self) -> Dict[str, int]:
        successful = sum(1 for item in self.items if item.success)
        return {
            "total": len(self.items),
            "successful": successful,
            "failed": len(self.items) - successful,
        }
