from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple


class FileCategory(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    OTHER = "other"


class ArtifactKind(str, Enum):
    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"
    COMPRESSED = "compressed"


@dataclass(frozen=True)
class ArtifactRole:
    """Original, Thumbnail(size) or Compressed.

    Only thumbnails carry a size; the constructors below are the only
    supported way to build one.
    """

    kind: ArtifactKind
    size: Optional[int] = None

    def __post_init__(self):
        if self.kind is ArtifactKind.THUMBNAIL:
            if self.size is None or self.size <= 0:
                raise ValueError("thumbnail role requires a positive size")
        elif self.size is not None:
            raise ValueError(f"{self.kind.value} role does not take a size")

    @classmethod
    def original(cls) -> "ArtifactRole":
        return cls(ArtifactKind.ORIGINAL)

    @classmethod
    def thumbnail(cls, size: int) -> "ArtifactRole":
        return cls(ArtifactKind.THUMBNAIL, size)

    @classmethod
    def compressed(cls) -> "ArtifactRole":
        return cls(ArtifactKind.COMPRESSED)

    @property
    def is_variant(self) -> bool:
        return self.kind is not ArtifactKind.ORIGINAL

    @property
    def tag(self) -> Optional[str]:
        return None if self.kind is ArtifactKind.ORIGINAL else self.kind.value


@dataclass
class FileRecord:
    id: str
    original_name: str
    stored_name: str
    storage_path: str
    size_bytes: int
    mime_type: str
    category: FileCategory
    checksum: str
    uploaded_by: str
    uploaded_at: datetime
    role: ArtifactRole = field(default_factory=ArtifactRole.original)
    tags: List[str] = field(default_factory=list)
    parent_id: Optional[str] = None
    description: Optional[str] = None
    is_public: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


@dataclass
class StorageUsage:
    total_size: int
    file_count: int


@dataclass
class FileSearchCriteria:
    category: Optional[FileCategory] = None
    mime_type: Optional[str] = None
    uploaded_by: Optional[str] = None
    include_public: bool = False
    tags: List[str] = field(default_factory=list)
    search_term: Optional[str] = None
    uploaded_after: Optional[datetime] = None
    uploaded_before: Optional[datetime] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    originals_only: bool = True
    page: int = 1
    limit: int = 20


@dataclass
class FileStatsSnapshot:
    total_files: int
    total_size: int
    files_by_category: Dict[str, int]
    files_by_type: Dict[str, int]


class FileRepository(Protocol):
    async def create(self, record: FileRecord) -> FileRecord:
        ...

    async def get_by_id(self, file_id: str, include_inactive: bool = False) -> Optional[FileRecord]:
        ...

    async def find_by_checksum(self, checksum: str, uploaded_by: Optional[str] = None) -> Optional[FileRecord]:
        ...

    async def find_variants(self, parent_id: str) -> List[FileRecord]:
        ...

    async def find_variant(self, parent_id: str, kind: ArtifactKind, size: Optional[int] = None) -> Optional[FileRecord]:
        ...

    async def update(self, file_id: str, **fields: Any) -> FileRecord:
        ...

    async def soft_delete(self, file_ids: Sequence[str], deleted_by: str) -> None:
        ...

    async def hard_delete(self, file_ids: Sequence[str]) -> None:
        ...

    async def user_usage(self, user_id: str) -> StorageUsage:
        ...

    async def search(self, criteria: FileSearchCriteria) -> Tuple[List[FileRecord], int]:
        ...

    async def stats(self, uploaded_by: Optional[str] = None, start: Optional[datetime] = None, end: Optional[datetime] = None) -> FileStatsSnapshot:
        ...

    async def log_access(self, file_id: str, user_id: str, action: str) -> None:
        ...
