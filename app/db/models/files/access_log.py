# app/db/models/files/access_log.py
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid
from sqlalchemy import Column

from ...types import UTCDateTime
from ....utils import utc_now


class FileAccessLog(SQLModel, table=True):
    __tablename__ = "file_access_logs"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    file_id: str = Field(index=True, max_length=80)
    user_id: str = Field(index=True, max_length=64)
    action: str = Field(max_length=20)
    timestamp: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, index=True, nullable=False))
