import os
from datetime import datetime, timedelta, timezone

import pytest

from app.application.services.chunked_upload_service import ChunkedUploadService, ChunkSessionStore
from app.exceptions import FileAccessDeniedError, FileRecordNotFoundError, FileValidationError


@pytest.fixture
def chunked(harness):
    return ChunkedUploadService(config=harness.config, pipeline=harness.pipeline, sessions=ChunkSessionStore())


def split(data, parts):
    step = -(-len(data) // parts)
    return [data[i:i + step] for i in range(0, len(data), step)]


@pytest.mark.asyncio
async def test_out_of_order_chunks_assemble_into_one_upload(harness, chunked, jpeg_bytes):
    parts = split(jpeg_bytes, 3)
    session = await chunked.init_session("site.jpg", len(jpeg_bytes), "image/jpeg", 3, "u1")

    status = await chunked.upload_chunk(session.session_id, 2, parts[2], "u1")
    assert status.received_chunks == [2] and not status.complete
    await chunked.upload_chunk(session.session_id, 0, parts[0], "u1")
    final = await chunked.upload_chunk(session.session_id, 1, parts[1], "u1")

    assert final.complete
    original = final.result.original_file
    assert original.size_bytes == len(jpeg_bytes)
    assert await harness.storage.read_bytes(original.storage_path) == jpeg_bytes
    assert len(final.result.thumbnails) == 3
    assert len(chunked.sessions) == 0
    assert not os.path.exists(session.directory)


@pytest.mark.asyncio
async def test_init_session_validation(chunked):
    with pytest.raises(FileValidationError):
        await chunked.init_session("a.txt", 0, "text/plain", 1, "u1")
    with pytest.raises(FileValidationError):
        await chunked.init_session("a.exe", 10, "application/x-msdownload", 1, "u1")
    with pytest.raises(FileValidationError):
        await chunked.init_session("a.txt", 3, "text/plain", 4, "u1")
    with pytest.raises(FileValidationError):
        await chunked.init_session("a.txt", chunked.config.policy.max_size + 1, "text/plain", 10, "u1")


@pytest.mark.asyncio
async def test_chunk_guards(chunked):
    session = await chunked.init_session("a.txt", 10, "text/plain", 2, "u1")
    with pytest.raises(FileRecordNotFoundError):
        await chunked.upload_chunk("nope", 0, b"x", "u1")
    with pytest.raises(FileAccessDeniedError):
        await chunked.upload_chunk(session.session_id, 0, b"x", "u2")
    with pytest.raises(FileValidationError):
        await chunked.upload_chunk(session.session_id, 2, b"x", "u1")
    with pytest.raises(FileValidationError):
        await chunked.upload_chunk(session.session_id, 0, b"", "u1")


@pytest.mark.asyncio
async def test_overflowing_session_is_discarded(chunked):
    session = await chunked.init_session("a.txt", 4, "text/plain", 2, "u1")
    with pytest.raises(FileValidationError):
        await chunked.upload_chunk(session.session_id, 0, b"too many bytes", "u1")
    assert chunked.sessions.get(session.session_id) is None
    assert not os.path.exists(session.directory)


@pytest.mark.asyncio
async def test_failed_pipeline_upload_still_discards_session(harness, chunked):
    session = await chunked.init_session("a.txt", 4, "text/plain", 1, "u1")
    with pytest.raises(FileValidationError):
        await chunked.upload_chunk(session.session_id, 0, b"MZ\x90\x00", "u1")
    assert len(chunked.sessions) == 0
    assert harness.file_repo.rows == {}


@pytest.mark.asyncio
async def test_cleanup_stale_sessions(chunked):
    fresh = await chunked.init_session("a.txt", 10, "text/plain", 2, "u1")
    stale = await chunked.init_session("b.txt", 10, "text/plain", 2, "u1")
    stale.created_at = datetime.now(timezone.utc) - timedelta(days=2)

    removed = await chunked.cleanup_stale(timedelta(hours=1))
    assert removed == 1
    assert chunked.sessions.get(fresh.session_id) is fresh
    assert chunked.sessions.get(stale.session_id) is None
    assert not os.path.exists(stale.directory)


@pytest.mark.asyncio
async def test_new_session_expires_old_ones(chunked):
    old = await chunked.init_session("a.txt", 10, "text/plain", 2, "u1")
    old.created_at = datetime.now(timezone.utc) - timedelta(days=2)

    fresh = await chunked.init_session("b.txt", 10, "text/plain", 2, "u2")
    assert chunked.sessions.get(old.session_id) is None
    assert not os.path.exists(old.directory)
    assert chunked.sessions.get(fresh.session_id) is fresh


@pytest.mark.asyncio
async def test_open_sessions_are_capped_per_user(chunked):
    limit = chunked.config.max_chunk_sessions_per_user
    sessions = [await chunked.init_session(f"{i}.txt", 4, "text/plain", 1, "u1") for i in range(limit)]
    with pytest.raises(FileValidationError):
        await chunked.init_session("extra.txt", 4, "text/plain", 1, "u1")
    assert len(chunked.sessions) == limit

    other = await chunked.init_session("other.txt", 4, "text/plain", 1, "u2")
    assert other.user_id == "u2"

    done = await chunked.upload_chunk(sessions[0].session_id, 0, b"abcd", "u1")
    assert done.complete
    reopened = await chunked.init_session("again.txt", 4, "text/plain", 1, "u1")

    with pytest.raises(FileValidationError):
        await chunked.init_session("extra.txt", 4, "text/plain", 1, "u1")
    sessions[1].created_at = datetime.now(timezone.utc) - timedelta(days=2)
    last = await chunked.init_session("last.txt", 4, "text/plain", 1, "u1")
    assert chunked.sessions.get(sessions[1].session_id) is None
    assert {reopened.session_id, last.session_id} <= {s.session_id for s in chunked.sessions.all()}
