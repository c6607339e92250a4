# app/core/config.py
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application Settings
    APP_NAME: str = "Inspection Files API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True

    # Database Settings
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./app/inspections.db")

    # Security Settings
    SECRET_KEY: str = Field(default="change-me-in-prod", alias="JWT_SECRET_KEY")
    ALGORITHM: str = "HS256"

    # CORS Settings
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")

    # Storage layout
    UPLOAD_DIR: str = "uploads"
    TEMP_DIR: str = "temp"
    BACKUP_DIR: str = "backups"

    # Upload policy
    MAX_FILE_SIZE: int = 50 * MIB
    MAX_FILES_PER_REQUEST: int = 10
    ALLOWED_MIME_TYPES: List[str] = [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/svg+xml",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/plain",
        "text/csv",
        "application/json",
    ]
    MALWARE_SCAN_ENABLED: bool = True
    BLOCKED_SHA256: List[str] = []

    # Image processing
    THUMBNAIL_SIZES: List[int] = [150, 300, 600]
    THUMBNAIL_QUALITY: int = 80
    COMPRESSION_QUALITY: int = 85
    MAX_IMAGE_DIMENSION: int = 2048

    # Bulk / chunked uploads
    BULK_UPLOAD_CONCURRENCY: int = 3
    CHUNK_SESSION_TTL_HOURS: int = 24
    MAX_CHUNK_SESSIONS_PER_USER: int = 5

    # Quotas
    MAX_STORAGE_GB: int = 100
    ROLE_QUOTAS: Dict[str, int] = {
        "admin": 10 * GIB,
        "manager": 5 * GIB,
        "inspector": 2 * GIB,
        "viewer": 500 * MIB,
    }

    # Middleware settings
    GZIP_MIN_SIZE: int = 500

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Rate Limiting (per client, per 15 minute window)
    RATE_LIMIT_WINDOW_SEC: int = 900
    RATE_LIMIT_UPLOADS: int = 50
    RATE_LIMIT_DOWNLOADS: int = 200
    REDIS_URL: Optional[str] = os.environ.get("REDIS_URL", None)

    def _split_csv(self, value: str) -> List[str]:
        if value is None:
            return []
        value = value.strip()
        if value == "":
            return []
        return [item.strip() for item in value.split(",")]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings: Settings = get_settings()


@dataclass(frozen=True)
class UploadPolicy:
    max_size: int
    allowed_mime_types: FrozenSet[str]
    scan_for_malware: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable view of the settings the file pipeline needs.

    Built once at startup and handed to every service that needs it.
    """

    upload_root: str
    temp_root: str
    backup_root: str
    policy: UploadPolicy
    thumbnail_sizes: Tuple[int, ...] = (150, 300, 600)
    thumbnail_quality: int = 80
    compression_quality: int = 85
    max_image_dimension: int = 2048
    bulk_concurrency: int = 3
    max_files_per_request: int = 10
    chunk_session_ttl_hours: int = 24
    max_chunk_sessions_per_user: int = 5
    max_storage_bytes: int = 100 * GIB
    role_quotas: Dict[str, int] = field(default_factory=dict)
    blocked_checksums: FrozenSet[str] = frozenset()

    def quota_for_role(self, role: Optional[str]) -> int:
        if role and role in self.role_quotas:
            return self.role_quotas[role]
        return self.role_quotas.get("viewer", 500 * MIB)


def build_pipeline_config(s: Settings) -> PipelineConfig:
    return PipelineConfig(
        upload_root=s.UPLOAD_DIR,
        temp_root=s.TEMP_DIR,
        backup_root=s.BACKUP_DIR,
        policy=UploadPolicy(
            max_size=s.MAX_FILE_SIZE,
            allowed_mime_types=frozenset(s.ALLOWED_MIME_TYPES),
            scan_for_malware=s.MALWARE_SCAN_ENABLED,
        ),
        thumbnail_sizes=tuple(s.THUMBNAIL_SIZES),
        thumbnail_quality=s.THUMBNAIL_QUALITY,
        compression_quality=s.COMPRESSION_QUALITY,
        max_image_dimension=s.MAX_IMAGE_DIMENSION,
        bulk_concurrency=s.BULK_UPLOAD_CONCURRENCY,
        max_files_per_request=s.MAX_FILES_PER_REQUEST,
        chunk_session_ttl_hours=s.CHUNK_SESSION_TTL_HOURS,
        max_chunk_sessions_per_user=s.MAX_CHUNK_SESSIONS_PER_USER,
        max_storage_bytes=s.MAX_STORAGE_GB * GIB,
        role_quotas=dict(s.ROLE_QUOTAS),
        blocked_checksums=frozenset(c.lower() for c in s.BLOCKED_SHA256),
    )
