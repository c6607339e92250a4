import logging
import posixpath
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..ports.file_repo import FileRecord, FileRepository
from ..ports.storage_repo import StorageRepository
from ...exceptions import FileProcessingError, FileServiceError, FileStorageError
from ...utils import generate_file_id, sanitize_filename

logger = logging.getLogger(__name__)


@dataclass
class UploadJournal:
    """Everything one upload has written so far, in write order."""

    paths: List[str] = field(default_factory=list)
    record_ids: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.paths and not self.record_ids


@dataclass
class CascadeDeleteResult:
    removed: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


def stored_name_for(artifact_id: str, proposed_name: str) -> str:
    return f"{artifact_id}_{sanitize_filename(proposed_name)}"


@dataclass
class PersistenceWriter:
    storage: StorageRepository
    file_repo: FileRepository

    async def save(self, data: bytes, proposed_name: str, subdirectory: str,
                   artifact_id: Optional[str] = None, journal: Optional[UploadJournal] = None) -> str:
        """Write bytes under the upload root and return their storage path."""
        stored_name = stored_name_for(artifact_id or generate_file_id(), proposed_name)
        if journal is not None:
            # Recorded up front so a write interrupted halfway is still rolled back
            journal.paths.append(posixpath.join(subdirectory, stored_name))
        path = await self.storage.save_bytes(subdirectory, stored_name, data)
        if journal is not None and journal.paths[-1] != path:
            journal.paths[-1] = path

        written = await self.storage.size(path)
        if written != len(data):
            raise FileStorageError(
                "Stored size does not match upload size",
                details={"path": path, "expected": len(data), "written": written},
            )
        return path

    async def create_record(self, record: FileRecord, journal: Optional[UploadJournal] = None) -> FileRecord:
        if record.role.is_variant:
            parent = await self.file_repo.get_by_id(record.parent_id) if record.parent_id else None
            if parent is None or parent.role.is_variant:
                raise FileProcessingError(
                    "Variant must reference an active original",
                    details={"file_id": record.id, "parent_id": record.parent_id},
                )
        elif record.parent_id is not None:
            raise FileProcessingError("Original files cannot have a parent", details={"file_id": record.id})

        created = await self.file_repo.create(record)
        if journal is not None:
            journal.record_ids.append(created.id)
        return created

    async def rollback(self, journal: UploadJournal) -> None:
        """Undo a partial upload: rows first, then bytes."""
        if journal.empty:
            return
        if journal.record_ids:
            try:
                await self.file_repo.hard_delete(list(reversed(journal.record_ids)))
            except Exception as e:
                logger.error(f"Rollback could not remove records {journal.record_ids}: {e}")
        for path in reversed(journal.paths):
            try:
                await self.storage.delete(path)
            except (FileServiceError, OSError) as e:
                logger.error(f"Rollback could not remove {path}: {e}")
        logger.info(f"Rolled back {len(journal.record_ids)} records and {len(journal.paths)} files")

    async def delete_cascade(self, original: FileRecord, deleted_by: str, permanent: bool = False) -> CascadeDeleteResult:
        """Retire the rows of an original and all of its variants, then remove their bytes.

        Rows go first so a failure never leaves an active record without
        bytes. A file that cannot be removed afterwards is reported in the
        result and does not stop the rest of the cascade.
        """
        variants = await self.file_repo.find_variants(original.id)
        ids = [v.id for v in variants] + [original.id]
        if permanent:
            await self.file_repo.hard_delete(ids)
        else:
            await self.file_repo.soft_delete(ids, deleted_by)

        result = CascadeDeleteResult()
        for artifact in [*variants, original]:
            try:
                existed = await self.storage.delete(artifact.storage_path)
            except (FileServiceError, OSError) as e:
                logger.warning(f"Failed to delete bytes of {artifact.id} at {artifact.storage_path}: {e}")
                result.failed.append({"file_id": artifact.id, "error": str(e)})
                continue
            if not existed:
                logger.warning(f"Bytes of {artifact.id} were already missing at {artifact.storage_path}")
            result.removed.append(artifact.id)
        return result
