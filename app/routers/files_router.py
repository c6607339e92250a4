from datetime import datetime, timedelta
from typing import List, Optional
from urllib.parse import quote
import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import StreamingResponse

from ..application.ports.file_repo import FileCategory, FileSearchCriteria
from ..application.services.chunked_upload_service import ChunkedUploadService
from ..application.services.file_pipeline import FilePipeline
from ..application.services.file_service import BulkOperation, FileService
from ..application.services.upload_types import UploadedFile, UploadOptions
from ..exceptions import FileValidationError, create_success_response
from ..schemas.common.common import ErrorResponse, PaginatedResponse
from ..schemas.files.file import (
    BulkOperationRequest,
    BulkOperationResponse,
    BulkUploadResponse,
    ChunkedUploadInitRequest,
    ChunkedUploadInitResponse,
    ChunkUploadResponse,
    DeleteResponse,
    FileDetailResponse,
    FileProcessingResponse,
    FileRecordResponse,
    FileStatsResponse,
    QuotaResponse,
)
from .dependencies import (
    get_chunked_upload_service,
    get_current_user,
    get_file_pipeline,
    get_file_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["Files"])


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_sizes(value: Optional[str]) -> Optional[List[int]]:
    items = _split_csv(value)
    if not items:
        return None
    try:
        sizes = [int(item) for item in items]
    except ValueError:
        raise FileValidationError([f"Invalid thumbnail sizes '{value}'"])
    if any(size <= 0 for size in sizes):
        raise FileValidationError(["Thumbnail sizes must be positive"])
    return sizes


def upload_options(
    category: Optional[FileCategory] = Form(None),
    tags: Optional[str] = Form(None, description="Comma separated tags"),
    description: Optional[str] = Form(None, max_length=1000),
    is_public: bool = Form(False),
    prevent_duplicates: bool = Form(False),
    generate_thumbnails: bool = Form(True),
    process_images: bool = Form(True),
    thumbnail_sizes: Optional[str] = Form(None, description="Comma separated sizes, e.g. 150,300"),
    compress: bool = Form(False),
    quality: Optional[int] = Form(None, ge=1, le=100),
    concurrency: Optional[int] = Form(None, ge=1, le=10),
) -> UploadOptions:
    return UploadOptions(
        category=category,
        tags=_split_csv(tags),
        description=description,
        is_public=is_public,
        prevent_duplicates=prevent_duplicates,
        generate_thumbnails=generate_thumbnails,
        process_images=process_images,
        thumbnail_sizes=_parse_sizes(thumbnail_sizes),
        compress=compress,
        quality=quality,
        concurrency=concurrency,
    )


async def _to_uploaded(file: UploadFile) -> UploadedFile:
    data = await file.read()
    return UploadedFile(original_name=file.filename or "upload", mime_type=file.content_type, data=data)


@router.post("/upload", status_code=201, responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}})
async def upload_file(
    file: UploadFile = File(...),
    options: UploadOptions = Depends(upload_options),
    current_user: str = Depends(get_current_user),
    pipeline: FilePipeline = Depends(get_file_pipeline),
):
    result = await pipeline.upload(await _to_uploaded(file), current_user, options)
    return create_success_response(FileProcessingResponse.from_result(result).model_dump(mode="json"))


@router.post("/upload/multiple", status_code=201)
async def upload_multiple_files(
    files: List[UploadFile] = File(...),
    options: UploadOptions = Depends(upload_options),
    current_user: str = Depends(get_current_user),
    pipeline: FilePipeline = Depends(get_file_pipeline),
):
    uploaded = [await _to_uploaded(f) for f in files]
    result = await pipeline.upload_many(uploaded, current_user, options)
    return create_success_response(BulkUploadResponse.from_result(result).model_dump(mode="json"))


@router.post("/upload/chunked/init", status_code=201)
async def init_chunked_upload(
    body: ChunkedUploadInitRequest,
    current_user: str = Depends(get_current_user),
    chunked: ChunkedUploadService = Depends(get_chunked_upload_service),
):
    options = UploadOptions(
        tags=body.tags,
        description=body.description,
        is_public=body.is_public,
        prevent_duplicates=body.prevent_duplicates,
        generate_thumbnails=body.generate_thumbnails,
        compress=body.compress,
        quality=body.quality,
    )
    session = await chunked.init_session(
        body.file_name, body.file_size, body.mime_type, body.total_chunks, current_user, options
    )
    response = ChunkedUploadInitResponse(
        session_id=session.session_id,
        total_chunks=session.total_chunks,
        expires_at=session.created_at + timedelta(hours=chunked.config.chunk_session_ttl_hours),
    )
    return create_success_response(response.model_dump(mode="json"))


@router.post("/upload/chunked/{session_id}")
async def upload_chunk(
    session_id: str,
    chunk_index: int = Form(..., ge=0),
    chunk: UploadFile = File(...),
    current_user: str = Depends(get_current_user),
    chunked: ChunkedUploadService = Depends(get_chunked_upload_service),
):
    status = await chunked.upload_chunk(session_id, chunk_index, await chunk.read(), current_user)
    response = ChunkUploadResponse(
        session_id=status.session_id,
        received_chunks=status.received_chunks,
        total_chunks=status.total_chunks,
        complete=status.complete,
        result=FileProcessingResponse.from_result(status.result) if status.result else None,
    )
    return create_success_response(response.model_dump(mode="json"))


@router.get("")
async def search_files(
    category: Optional[FileCategory] = Query(None),
    mime_type: Optional[str] = Query(None),
    tags: Optional[str] = Query(None, description="Comma separated tags, all must match"),
    search: Optional[str] = Query(None, max_length=200),
    uploaded_after: Optional[datetime] = Query(None),
    uploaded_before: Optional[datetime] = Query(None),
    min_size: Optional[int] = Query(None, ge=0),
    max_size: Optional[int] = Query(None, ge=0),
    uploaded_by: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: str = Depends(get_current_user),
    service: FileService = Depends(get_file_service),
):
    criteria = FileSearchCriteria(
        category=category,
        mime_type=mime_type,
        uploaded_by=uploaded_by,
        tags=_split_csv(tags),
        search_term=search,
        uploaded_after=uploaded_after,
        uploaded_before=uploaded_before,
        min_size=min_size,
        max_size=max_size,
        page=page,
        limit=limit,
    )
    records, total = await service.search(criteria, current_user)
    items = [FileRecordResponse.from_record(r).model_dump(mode="json") for r in records]
    return create_success_response(PaginatedResponse.build(items, total, page, limit).model_dump(mode="json"))


@router.get("/stats")
async def file_stats(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: str = Depends(get_current_user),
    service: FileService = Depends(get_file_service),
):
    stats = await service.stats(current_user, start, end)
    return create_success_response(FileStatsResponse.from_stats(stats).model_dump(mode="json"))


@router.get("/quota")
async def file_quota(
    current_user: str = Depends(get_current_user),
    service: FileService = Depends(get_file_service),
):
    status = await service.quota(current_user)
    return create_success_response(QuotaResponse.from_status(status).model_dump(mode="json"))


@router.post("/bulk")
async def bulk_operation(
    body: BulkOperationRequest,
    current_user: str = Depends(get_current_user),
    service: FileService = Depends(get_file_service),
):
    result = await service.bulk_operation(
        BulkOperation(file_ids=body.file_ids, operation=body.operation, options=body.options), current_user
    )
    return create_success_response(BulkOperationResponse.from_result(result).model_dump(mode="json"))


@router.get("/{file_id}")
async def get_file(
    file_id: str,
    current_user: str = Depends(get_current_user),
    service: FileService = Depends(get_file_service),
):
    record = await service.get_file(file_id, current_user)
    variants = await service.get_variants(file_id)
    response = FileDetailResponse(
        file=FileRecordResponse.from_record(record),
        variants=[FileRecordResponse.from_record(v) for v in variants],
    )
    return create_success_response(response.model_dump(mode="json"))


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    variant: str = Query("original", pattern="^(original|thumbnail|compressed)$"),
    size: Optional[int] = Query(None, gt=0),
    download: bool = Query(False),
    current_user: str = Depends(get_current_user),
    service: FileService = Depends(get_file_service),
):
    content = await service.get_content(file_id, current_user, variant=variant, size=size)
    disposition = "attachment" if download else "inline"
    filename = content.metadata.original_name
    return StreamingResponse(
        content.stream,
        media_type=content.content_type,
        headers={
            "Content-Length": str(content.content_length),
            "Content-Disposition": f"{disposition}; filename*=UTF-8''{quote(filename)}",
            "Cache-Control": "private, max-age=3600",
            "X-File-Checksum": content.metadata.checksum,
        },
    )


@router.delete("/{file_id}")
async def delete_file(
    file_id: str,
    permanent: bool = Query(False),
    current_user: str = Depends(get_current_user),
    service: FileService = Depends(get_file_service),
):
    result = await service.delete(file_id, current_user, permanent=permanent)
    return create_success_response(DeleteResponse.from_result(result).model_dump(mode="json"))
