import asyncio

import pytest

from app.application.ports.file_repo import ArtifactKind, FileCategory
from app.application.services import file_pipeline as file_pipeline_module
from app.application.services.upload_types import UploadedFile, UploadOptions
from app.exceptions import ErrorCodes, FileProcessingError, FileValidationError
from fakes import make_image_bytes, read_stream


def text_file(name, body):
    return UploadedFile(original_name=name, mime_type="text/plain", data=body.encode())


@pytest.mark.asyncio
async def test_image_upload_creates_original_and_default_thumbnails(harness, jpeg_bytes):
    result = await harness.pipeline.upload(UploadedFile("site.jpg", "image/jpeg", jpeg_bytes), "u1")

    original = result.original_file
    assert original.category is FileCategory.IMAGE
    assert original.mime_type == "image/jpeg"
    assert original.storage_path.startswith("images/")
    assert [t.role.size for t in result.thumbnails] == [150, 300, 600]
    assert result.processed_files == []
    assert len(harness.file_repo.rows) == 4
    assert len(harness.stored_files()) == 4
    for thumb in result.thumbnails:
        assert thumb.parent_id == original.id
        assert thumb.id == f"{original.id}_thumb_{thumb.role.size}"
        assert max(thumb.metadata["width"], thumb.metadata["height"]) <= thumb.role.size
    assert result.metadata["dimensions"] == {"width": 320, "height": 240}
    assert result.metadata["checksum"] == original.checksum
    assert result.metadata["fileSize"] == len(jpeg_bytes)
    assert ("file_upload", True) in [(e["action"], e["success"]) for e in harness.audit.entries]
    assert harness.file_repo.access_log == [(original.id, "u1", "upload")]


@pytest.mark.asyncio
async def test_end_to_end_thumbnail_and_compressed_copy(harness, jpeg_bytes):
    options = UploadOptions(thumbnail_sizes=[150], compress=True, quality=80)
    result = await harness.pipeline.upload(UploadedFile("site.jpg", "image/jpeg", jpeg_bytes), "u1", options)

    assert len(result.thumbnails) == 1
    assert len(result.processed_files) == 1
    thumb, compressed = result.thumbnails[0], result.processed_files[0]
    assert thumb.original_name == "thumb_150_site.jpg"
    assert thumb.storage_path.startswith("thumbnails/")
    assert compressed.original_name == "compressed_site.jpg"
    assert compressed.role.kind is ArtifactKind.COMPRESSED
    assert compressed.storage_path.startswith("compressed/")
    assert compressed.metadata["compressionQuality"] == 80
    assert compressed.metadata["originalSize"] == len(jpeg_bytes)
    assert compressed.size_bytes < len(jpeg_bytes)

    checksums = [a.checksum for a in result.artifacts]
    assert len(set(checksums)) == 3
    assert len(harness.stored_files()) == 3
    assert "variantProcessingTime" in result.original_file.metadata


@pytest.mark.asyncio
async def test_duplicate_upload_returns_existing_record(harness, jpeg_bytes):
    options = UploadOptions(prevent_duplicates=True, thumbnail_sizes=[150])
    first = await harness.pipeline.upload(UploadedFile("a.jpg", "image/jpeg", jpeg_bytes), "u1", options)
    files_before = harness.stored_files()
    rows_before = set(harness.file_repo.rows)

    second = await harness.pipeline.upload(UploadedFile("b.jpg", "image/jpeg", jpeg_bytes), "u1", options)

    assert second.duplicate is True
    assert second.original_file.id == first.original_file.id
    assert [t.id for t in second.thumbnails] == [t.id for t in first.thumbnails]
    assert harness.stored_files() == files_before
    assert set(harness.file_repo.rows) == rows_before


@pytest.mark.asyncio
async def test_duplicates_stored_when_prevention_off(harness):
    a = await harness.pipeline.upload(text_file("a.txt", "same body"), "u1")
    b = await harness.pipeline.upload(text_file("b.txt", "same body"), "u1")
    assert a.original_file.id != b.original_file.id
    assert a.original_file.checksum == b.original_file.checksum
    assert not b.duplicate


@pytest.mark.asyncio
async def test_concurrent_duplicate_uploads_store_one_copy(harness):
    options = UploadOptions(prevent_duplicates=True)
    results = await asyncio.gather(
        *(harness.pipeline.upload(text_file(f"{i}.txt", "identical"), "u1", options) for i in range(4))
    )
    assert sum(1 for r in results if not r.duplicate) == 1
    assert len({r.original_file.id for r in results}) == 1
    assert len(harness.file_repo.rows) == 1
    assert len(harness.pipeline.checksum_locks) == 0


@pytest.mark.asyncio
async def test_quota_exceeded_rejects_before_writing(harness, jpeg_bytes):
    with pytest.raises(FileValidationError) as excinfo:
        await harness.pipeline.upload(UploadedFile("big.jpg", "image/jpeg", jpeg_bytes), "tiny")
    assert any("quota" in e for e in excinfo.value.errors)
    assert harness.stored_files() == []
    assert harness.file_repo.rows == {}
    assert harness.audit.entries[-1]["success"] is False


@pytest.mark.asyncio
async def test_text_document_gets_metadata_and_no_variants(harness):
    result = await harness.pipeline.upload(text_file("notes.txt", "line one\nline two"), "u1")
    assert result.original_file.category is FileCategory.DOCUMENT
    assert result.original_file.storage_path.startswith("documents/")
    assert result.thumbnails == [] and result.processed_files == []
    assert result.metadata["lines"] == 2
    assert result.metadata["words"] == 4


@pytest.mark.asyncio
async def test_undecodable_image_fails_without_leftovers(harness):
    broken = b"\xff\xd8\xff\xe0" + b"\x00garbage" * 64
    with pytest.raises(FileProcessingError) as excinfo:
        await harness.pipeline.upload(UploadedFile("broken.jpg", "image/jpeg", broken), "u1")
    assert excinfo.value.message == "Image processing failed"
    assert harness.stored_files() == []
    assert harness.file_repo.rows == {}


@pytest.mark.asyncio
async def test_variant_row_failure_rolls_back_everything(harness, jpeg_bytes, monkeypatch):
    monkeypatch.setattr(file_pipeline_module, "generate_file_id", lambda: "fixed")
    harness.file_repo.fail_create_ids.add("fixed_thumb_300")

    with pytest.raises(FileProcessingError) as excinfo:
        await harness.pipeline.upload(UploadedFile("site.jpg", "image/jpeg", jpeg_bytes), "u1")

    assert excinfo.value.message == "File upload failed"
    assert harness.file_repo.rows == {}
    assert harness.stored_files() == []


@pytest.mark.asyncio
async def test_failed_thumbnail_size_is_skipped_and_reported(harness, jpeg_bytes):
    options = UploadOptions(thumbnail_sizes=[150, -5])
    result = await harness.pipeline.upload(UploadedFile("site.jpg", "image/jpeg", jpeg_bytes), "u1", options)
    assert [t.role.size for t in result.thumbnails] == [150]
    errors = result.original_file.metadata["thumbnailErrors"]
    assert errors[0]["size"] == -5


@pytest.mark.asyncio
async def test_thumbnail_sizes_are_deduplicated(harness, jpeg_bytes):
    options = UploadOptions(thumbnail_sizes=[150, 150])
    result = await harness.pipeline.upload(UploadedFile("site.jpg", "image/jpeg", jpeg_bytes), "u1", options)
    assert len(result.thumbnails) == 1


@pytest.mark.asyncio
async def test_access_log_failure_does_not_fail_upload(harness):
    harness.file_repo.fail_log_access = True
    result = await harness.pipeline.upload(text_file("a.txt", "hello"), "u1")
    assert harness.file_repo.rows[result.original_file.id].is_active


@pytest.mark.asyncio
async def test_cancelled_upload_is_rolled_back(harness, jpeg_bytes):
    reached = asyncio.Event()

    async def stalled_generate(data, original, options, journal=None):
        reached.set()
        await asyncio.sleep(30)

    harness.pipeline.variant_generator.generate = stalled_generate
    task = asyncio.create_task(harness.pipeline.upload(UploadedFile("site.jpg", "image/jpeg", jpeg_bytes), "u1"))
    await reached.wait()
    assert len(harness.file_repo.rows) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert harness.file_repo.rows == {}
    assert harness.stored_files() == []


@pytest.mark.asyncio
async def test_bulk_upload_isolates_failures(harness):
    files = [text_file(f"{i}.txt", f"body {i}") for i in range(5)]
    files[2] = UploadedFile("2.exe", "text/plain", b"MZ\x90\x00" + b"\x00" * 64)

    result = await harness.pipeline.upload_many(files, "u1", UploadOptions(concurrency=2))

    assert result.summary == {"total": 5, "successful": 4, "failed": 1}
    assert [item.original_name for item in result.items] == [f.original_name for f in files]
    failed = result.items[2]
    assert failed.error_code == ErrorCodes.FILE_VALIDATION_ERROR
    for item, upload in zip(result.items, files):
        if item.success:
            fetched = await harness.service.get_file(item.result.original_file.id, "u1")
            assert fetched.original_name == item.original_name
            content = await harness.service.get_content(item.result.original_file.id, "u1")
            assert await read_stream(content.stream) == upload.data


@pytest.mark.asyncio
async def test_bulk_upload_rejects_empty_and_oversized_batches(harness):
    with pytest.raises(FileValidationError):
        await harness.pipeline.upload_many([], "u1")
    too_many = [text_file(f"{i}.txt", str(i)) for i in range(harness.config.max_files_per_request + 1)]
    with pytest.raises(FileValidationError):
        await harness.pipeline.upload_many(too_many, "u1")
    assert harness.file_repo.rows == {}


@pytest.mark.asyncio
async def test_duplicate_detection_is_scoped_to_the_uploader(harness):
    options = UploadOptions(prevent_duplicates=True)
    private = await harness.pipeline.upload(
        text_file("a.txt", "shared body"), "u1", UploadOptions(prevent_duplicates=True, description="u1 notes")
    )

    theirs = await harness.pipeline.upload(text_file("b.txt", "shared body"), "u2", options)

    assert theirs.duplicate is False
    assert theirs.original_file.id != private.original_file.id
    assert theirs.original_file.uploaded_by == "u2"
    assert theirs.original_file.description is None
    assert (await harness.service.get_file(theirs.original_file.id, "u2")).original_name == "b.txt"

    again = await harness.pipeline.upload(text_file("c.txt", "shared body"), "u2", options)
    assert again.duplicate is True
    assert again.original_file.id == theirs.original_file.id


@pytest.mark.asyncio
async def test_empty_thumbnail_list_means_no_thumbnails(harness, jpeg_bytes):
    result = await harness.pipeline.upload(
        UploadedFile("site.jpg", "image/jpeg", jpeg_bytes), "u1", UploadOptions(thumbnail_sizes=[])
    )
    assert result.thumbnails == []
    assert len(harness.stored_files()) == 1
