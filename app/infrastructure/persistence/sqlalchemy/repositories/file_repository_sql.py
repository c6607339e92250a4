from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import String, cast, func, or_
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select

from .....db.models import FileAccessLog, StoredFile
from .....application.ports.file_repo import (
    ArtifactKind,
    ArtifactRole,
    FileCategory,
    FileRecord,
    FileRepository,
    FileSearchCriteria,
    FileStatsSnapshot,
    StorageUsage,
)
from .....exceptions import FileRecordNotFoundError
from .....utils import utc_now


def encode_role(role: ArtifactRole) -> str:
    if role.kind is ArtifactKind.THUMBNAIL:
        return f"thumbnail:{role.size}"
    return role.kind.value


def decode_role(value: str) -> ArtifactRole:
    if value.startswith("thumbnail:"):
        return ArtifactRole.thumbnail(int(value.split(":", 1)[1]))
    if value == ArtifactKind.COMPRESSED.value:
        return ArtifactRole.compressed()
    return ArtifactRole.original()


# Domain field name -> table column attribute, where they differ
_COLUMN_NAMES = {"metadata": "file_metadata"}


class SqlFileRepository(FileRepository):
    """FileRepository over the stored_files table.

    Each call runs in its own short session, so one repository can be shared
    by concurrent uploads.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def _to_record(self, row: StoredFile) -> FileRecord:
        return FileRecord(
            id=row.id,
            original_name=row.original_name,
            stored_name=row.stored_name,
            storage_path=row.storage_path,
            size_bytes=row.size_bytes,
            mime_type=row.mime_type,
            category=FileCategory(row.category),
            checksum=row.checksum,
            uploaded_by=row.uploaded_by,
            uploaded_at=row.uploaded_at,
            role=decode_role(row.role),
            tags=list(row.tags or []),
            parent_id=row.parent_id,
            description=row.description,
            is_public=bool(row.is_public),
            metadata=dict(row.file_metadata or {}),
            is_active=bool(row.is_active),
            deleted_at=row.deleted_at,
            deleted_by=row.deleted_by,
        )

    def _to_row(self, record: FileRecord) -> StoredFile:
        return StoredFile(
            id=record.id,
            original_name=record.original_name,
            stored_name=record.stored_name,
            storage_path=record.storage_path,
            size_bytes=record.size_bytes,
            mime_type=record.mime_type,
            category=FileCategory(record.category).value,
            checksum=record.checksum,
            uploaded_by=record.uploaded_by,
            uploaded_at=record.uploaded_at,
            updated_at=record.uploaded_at,
            role=encode_role(record.role),
            parent_id=record.parent_id,
            description=record.description,
            is_public=record.is_public,
            tags=list(record.tags),
            file_metadata=dict(record.metadata),
            is_active=record.is_active,
            deleted_at=record.deleted_at,
            deleted_by=record.deleted_by,
        )

    async def create(self, record: FileRecord) -> FileRecord:
        async with self.session_factory() as session:
            row = self._to_row(record)
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return self._to_record(row)

    async def get_by_id(self, file_id: str, include_inactive: bool = False) -> Optional[FileRecord]:
        async with self.session_factory() as session:
            stmt = select(StoredFile).where(StoredFile.id == file_id)
            if not include_inactive:
                stmt = stmt.where(StoredFile.is_active == True)  # noqa: E712
            row = (await session.exec(stmt)).first()
            return self._to_record(row) if row else None

    async def find_by_checksum(self, checksum: str, uploaded_by: Optional[str] = None) -> Optional[FileRecord]:
        async with self.session_factory() as session:
            stmt = (
                select(StoredFile)
                .where(StoredFile.checksum == checksum)
                .where(StoredFile.role == ArtifactKind.ORIGINAL.value)
                .where(StoredFile.is_active == True)  # noqa: E712
                .order_by(StoredFile.uploaded_at)
            )
            if uploaded_by is not None:
                stmt = stmt.where(StoredFile.uploaded_by == uploaded_by)
            row = (await session.exec(stmt)).first()
            return self._to_record(row) if row else None

    async def find_variants(self, parent_id: str) -> List[FileRecord]:
        async with self.session_factory() as session:
            stmt = (
                select(StoredFile)
                .where(StoredFile.parent_id == parent_id)
                .where(StoredFile.is_active == True)  # noqa: E712
                .order_by(StoredFile.id)
            )
            rows = (await session.exec(stmt)).all()
            return [self._to_record(r) for r in rows]

    async def find_variant(self, parent_id: str, kind: ArtifactKind, size: Optional[int] = None) -> Optional[FileRecord]:
        variants = await self.find_variants(parent_id)
        candidates = [v for v in variants if v.role.kind is kind]
        if kind is ArtifactKind.THUMBNAIL:
            if size is not None:
                candidates = [v for v in candidates if v.role.size == size]
            candidates.sort(key=lambda v: v.role.size)
        return candidates[0] if candidates else None

    async def update(self, file_id: str, **fields: Any) -> FileRecord:
        async with self.session_factory() as session:
            row = await session.get(StoredFile, file_id)
            if row is None:
                raise FileRecordNotFoundError("File not found", details={"file_id": file_id})
            for name, value in fields.items():
                if name == "role":
                    value = encode_role(value)
                elif name == "category":
                    value = FileCategory(value).value
                elif name in ("tags", "metadata"):
                    # JSON columns need a fresh object to be flagged dirty
                    value = list(value) if name == "tags" else dict(value)
                setattr(row, _COLUMN_NAMES.get(name, name), value)
            row.updated_at = utc_now()
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return self._to_record(row)

    async def soft_delete(self, file_ids: Sequence[str], deleted_by: str) -> None:
        if not file_ids:
            return
        now = utc_now()
        async with self.session_factory() as session:
            rows = (await session.exec(select(StoredFile).where(StoredFile.id.in_(list(file_ids))))).all()
            for row in rows:
                row.is_active = False
                row.deleted_at = now
                row.deleted_by = deleted_by
                row.updated_at = now
                session.add(row)
            await session.commit()

    async def hard_delete(self, file_ids: Sequence[str]) -> None:
        if not file_ids:
            return
        async with self.session_factory() as session:
            rows = (await session.exec(select(StoredFile).where(StoredFile.id.in_(list(file_ids))))).all()
            # Variants reference their original, so they go first
            for row in sorted(rows, key=lambda r: r.parent_id is None):
                await session.delete(row)
                await session.flush()
            await session.commit()

    async def user_usage(self, user_id: str) -> StorageUsage:
        async with self.session_factory() as session:
            stmt = (
                select(func.coalesce(func.sum(StoredFile.size_bytes), 0), func.count(StoredFile.id))
                .where(StoredFile.uploaded_by == user_id)
                .where(StoredFile.is_active == True)  # noqa: E712
            )
            total, count = (await session.exec(stmt)).one()
            return StorageUsage(total_size=int(total or 0), file_count=int(count or 0))

    def _apply_criteria(self, stmt, criteria: FileSearchCriteria):
        stmt = stmt.where(StoredFile.is_active == True)  # noqa: E712
        if criteria.originals_only:
            stmt = stmt.where(StoredFile.role == ArtifactKind.ORIGINAL.value)
        if criteria.uploaded_by:
            if criteria.include_public:
                stmt = stmt.where(or_(StoredFile.uploaded_by == criteria.uploaded_by, StoredFile.is_public == True))  # noqa: E712
            else:
                stmt = stmt.where(StoredFile.uploaded_by == criteria.uploaded_by)
        if criteria.category:
            stmt = stmt.where(StoredFile.category == FileCategory(criteria.category).value)
        if criteria.mime_type:
            stmt = stmt.where(StoredFile.mime_type == criteria.mime_type)
        for tag in criteria.tags:
            stmt = stmt.where(cast(StoredFile.tags, String).like(f'%"{tag}"%'))
        if criteria.search_term:
            pattern = f"%{criteria.search_term}%"
            stmt = stmt.where(or_(StoredFile.original_name.ilike(pattern), StoredFile.description.ilike(pattern)))
        if criteria.uploaded_after:
            stmt = stmt.where(StoredFile.uploaded_at >= criteria.uploaded_after)
        if criteria.uploaded_before:
            stmt = stmt.where(StoredFile.uploaded_at <= criteria.uploaded_before)
        if criteria.min_size is not None:
            stmt = stmt.where(StoredFile.size_bytes >= criteria.min_size)
        if criteria.max_size is not None:
            stmt = stmt.where(StoredFile.size_bytes <= criteria.max_size)
        return stmt

    async def search(self, criteria: FileSearchCriteria) -> Tuple[List[FileRecord], int]:
        page = max(1, criteria.page)
        limit = max(1, criteria.limit)
        async with self.session_factory() as session:
            filtered = self._apply_criteria(select(StoredFile), criteria)
            total = (await session.exec(select(func.count()).select_from(filtered.subquery()))).one()
            stmt = filtered.order_by(StoredFile.uploaded_at.desc()).offset((page - 1) * limit).limit(limit)
            rows = (await session.exec(stmt)).all()
            return [self._to_record(r) for r in rows], int(total)

    async def stats(self, uploaded_by: Optional[str] = None, start: Optional[datetime] = None, end: Optional[datetime] = None) -> FileStatsSnapshot:
        def scoped(stmt):
            stmt = stmt.where(StoredFile.is_active == True)  # noqa: E712
            if uploaded_by:
                stmt = stmt.where(StoredFile.uploaded_by == uploaded_by)
            if start:
                stmt = stmt.where(StoredFile.uploaded_at >= start)
            if end:
                stmt = stmt.where(StoredFile.uploaded_at <= end)
            return stmt

        async with self.session_factory() as session:
            total_files, total_size = (await session.exec(scoped(
                select(func.count(StoredFile.id), func.coalesce(func.sum(StoredFile.size_bytes), 0))
            ))).one()
            by_category = (await session.exec(scoped(
                select(StoredFile.category, func.count(StoredFile.id)).group_by(StoredFile.category)
            ))).all()
            by_type = (await session.exec(scoped(
                select(StoredFile.mime_type, func.count(StoredFile.id)).group_by(StoredFile.mime_type)
            ))).all()

        files_by_category: Dict[str, int] = {c.value: 0 for c in FileCategory}
        files_by_category.update({category: int(count) for category, count in by_category})
        return FileStatsSnapshot(
            total_files=int(total_files or 0),
            total_size=int(total_size or 0),
            files_by_category=files_by_category,
            files_by_type={mime: int(count) for mime, count in by_type},
        )

    async def log_access(self, file_id: str, user_id: str, action: str) -> None:
        async with self.session_factory() as session:
            session.add(FileAccessLog(file_id=file_id, user_id=user_id, action=action))
            await session.commit()
