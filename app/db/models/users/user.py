# app/db/models/users/user.py
from typing import List, Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid
from sqlalchemy import Column, JSON, BigInteger

from ...types import UTCDateTime
from ....utils import utc_now


class User(SQLModel, table=True):
    __tablename__ = "users"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(max_length=100)
    email: Optional[str] = Field(max_length=100, default=None, index=True)
    role: str = Field(default="viewer", max_length=20)
    # Overrides the role default when set
    quota_bytes: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    permissions: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
