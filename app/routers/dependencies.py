import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..application.ports.audit_logger import AuditLogger
from ..application.ports.malware_scanner import MalwareScanner
from ..application.services.access_policy import AccessPolicy
from ..application.services.chunked_upload_service import ChunkedUploadService, ChunkSessionStore
from ..application.services.deduplicator import ChecksumLockRegistry, Deduplicator
from ..application.services.file_pipeline import FilePipeline
from ..application.services.file_service import FileService
from ..application.services.file_validator import FileValidator
from ..application.services.persistence_writer import PersistenceWriter
from ..application.services.quota_service import QuotaService
from ..application.services.variant_generator import VariantGenerator
from ..core.config import PipelineConfig
from ..infrastructure.persistence.sqlalchemy.repositories.file_repository_sql import SqlFileRepository
from ..infrastructure.persistence.sqlalchemy.repositories.user_repository_sql import SqlUserRepository
from ..infrastructure.storage.local_storage import LocalStorageRepository
from ..utils import decode_jwt_token

logger = logging.getLogger(__name__)

oauth2_scheme = HTTPBearer(auto_error=False)


@dataclass
class FileServices:
    config: PipelineConfig
    pipeline: FilePipeline
    files: FileService
    chunked: ChunkedUploadService


def build_file_services(config: PipelineConfig, session_factory: async_sessionmaker,
                        audit_logger: Optional[AuditLogger] = None,
                        scanner: Optional[MalwareScanner] = None) -> FileServices:
    """Wire the file pipeline and its collaborators for one application instance."""
    file_repo = SqlFileRepository(session_factory)
    user_repo = SqlUserRepository(session_factory)
    storage = LocalStorageRepository(config.upload_root, config.backup_root)
    writer = PersistenceWriter(storage=storage, file_repo=file_repo)
    quota_service = QuotaService(file_repo=file_repo, user_repo=user_repo, config=config)

    pipeline = FilePipeline(
        config=config,
        validator=FileValidator(policy=config.policy, quota_service=quota_service, scanner=scanner),
        deduplicator=Deduplicator(file_repo=file_repo),
        variant_generator=VariantGenerator(writer=writer, config=config),
        writer=writer,
        file_repo=file_repo,
        checksum_locks=ChecksumLockRegistry(),
        audit_logger=audit_logger,
    )
    files = FileService(
        config=config,
        file_repo=file_repo,
        storage=storage,
        writer=writer,
        access_policy=AccessPolicy(user_repo=user_repo),
        quota_service=quota_service,
        audit_logger=audit_logger,
    )
    chunked = ChunkedUploadService(config=config, pipeline=pipeline, sessions=ChunkSessionStore())
    return FileServices(config=config, pipeline=pipeline, files=files, chunked=chunked)


def get_current_user(request: Request, credentials: HTTPAuthorizationCredentials = Depends(oauth2_scheme)) -> str:
    token = None
    if credentials and credentials.credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get("access_token")
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")
    payload = decode_jwt_token(token)
    if not payload:
        logger.warning("JWT token decode failed - invalid or expired token")
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user_id = payload.get("sub")
    if not user_id:
        logger.warning("JWT token missing user ID")
        raise HTTPException(status_code=401, detail="Invalid token: missing user ID")
    return str(user_id)


def get_file_services(request: Request) -> FileServices:
    return request.app.state.file_services


def get_file_pipeline(services: FileServices = Depends(get_file_services)) -> FilePipeline:
    return services.pipeline


def get_file_service(services: FileServices = Depends(get_file_services)) -> FileService:
    return services.files


def get_chunked_upload_service(services: FileServices = Depends(get_file_services)) -> ChunkedUploadService:
    return services.chunked
