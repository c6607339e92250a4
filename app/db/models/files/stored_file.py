# app/db/models/files/stored_file.py
from typing import Any, Dict, List, Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid
from sqlalchemy import Column, JSON, BigInteger

from ...types import UTCDateTime
from ....utils import utc_now


class StoredFile(SQLModel, table=True):
    """One row per stored artifact: an original upload or one of its variants."""

    __tablename__ = "stored_files"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=80)
    original_name: str = Field(max_length=255)
    stored_name: str = Field(max_length=400)
    storage_path: str = Field(max_length=1000)
    size_bytes: int = Field(sa_column=Column(BigInteger, nullable=False))
    mime_type: str = Field(max_length=100)
    category: str = Field(max_length=20, index=True)
    checksum: str = Field(max_length=64, index=True)
    uploaded_by: str = Field(index=True, max_length=64)
    uploaded_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
    role: str = Field(default="original", max_length=20)
    parent_id: Optional[str] = Field(default=None, foreign_key="stored_files.id", index=True)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_public: bool = Field(default=False)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    # "metadata" is reserved on declarative classes, so the attribute is renamed
    file_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    is_active: bool = Field(default=True, index=True)
    deleted_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))
    deleted_by: Optional[str] = Field(default=None, max_length=64)
