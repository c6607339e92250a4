from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from app.application.ports.file_repo import ArtifactKind, ArtifactRole, FileCategory, FileRecord, FileSearchCriteria
from app.database import build_engine, build_session_factory, create_db_and_tables
from app.db.models import User
from app.infrastructure.persistence.sqlalchemy.repositories.file_repository_sql import (
    SqlFileRepository,
    decode_role,
    encode_role,
)
from app.infrastructure.persistence.sqlalchemy.repositories.user_repository_sql import SqlUserRepository


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'files.db'}")
    await create_db_and_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


def record(file_id, **overrides):
    values = dict(
        id=file_id,
        original_name=f"{file_id}.jpg",
        stored_name=f"{file_id}_{file_id}.jpg",
        storage_path=f"images/{file_id}_{file_id}.jpg",
        size_bytes=100,
        mime_type="image/jpeg",
        category=FileCategory.IMAGE,
        checksum=f"sum-{file_id}",
        uploaded_by="u1",
        uploaded_at=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return FileRecord(**values)


def test_role_encoding():
    for role in (ArtifactRole.original(), ArtifactRole.compressed(), ArtifactRole.thumbnail(300)):
        assert decode_role(encode_role(role)) == role
    assert encode_role(ArtifactRole.thumbnail(150)) == "thumbnail:150"


@pytest.mark.asyncio
async def test_create_and_read_back(session_factory):
    repo = SqlFileRepository(session_factory)
    created = await repo.create(record("p1", tags=["roof"], metadata={"dimensions": {"width": 2, "height": 1}}))
    fetched = await repo.get_by_id("p1")
    assert fetched.tags == ["roof"]
    assert fetched.metadata["dimensions"] == {"width": 2, "height": 1}
    assert fetched.role == ArtifactRole.original()
    assert fetched.category is FileCategory.IMAGE
    assert created.id == "p1"


@pytest.mark.asyncio
async def test_variants_and_checksum_lookup(session_factory):
    repo = SqlFileRepository(session_factory)
    await repo.create(record("p1", checksum="same"))
    await repo.create(record("p1_thumb_300", role=ArtifactRole.thumbnail(300), parent_id="p1", checksum="t300"))
    await repo.create(record("p1_thumb_150", role=ArtifactRole.thumbnail(150), parent_id="p1", checksum="t150"))
    await repo.create(record("p1_compressed", role=ArtifactRole.compressed(), parent_id="p1", checksum="same"))

    assert (await repo.find_by_checksum("same")).id == "p1"
    assert (await repo.find_by_checksum("same", uploaded_by="u1")).id == "p1"
    assert await repo.find_by_checksum("same", uploaded_by="u2") is None
    assert len(await repo.find_variants("p1")) == 3
    assert (await repo.find_variant("p1", ArtifactKind.THUMBNAIL)).role.size == 150
    assert (await repo.find_variant("p1", ArtifactKind.THUMBNAIL, 300)).id == "p1_thumb_300"
    assert await repo.find_variant("p1", ArtifactKind.THUMBNAIL, 999) is None


@pytest.mark.asyncio
async def test_update_soft_and_hard_delete(session_factory):
    repo = SqlFileRepository(session_factory)
    await repo.create(record("p1"))
    await repo.create(record("p1_compressed", role=ArtifactRole.compressed(), parent_id="p1"))

    updated = await repo.update("p1", metadata={"processingTime": 5}, size_bytes=50)
    assert updated.metadata == {"processingTime": 5}
    assert updated.size_bytes == 50

    await repo.soft_delete(["p1_compressed", "p1"], "u1")
    assert await repo.get_by_id("p1") is None
    hidden = await repo.get_by_id("p1", include_inactive=True)
    assert hidden.deleted_by == "u1"
    assert await repo.find_by_checksum("sum-p1") is None

    await repo.hard_delete(["p1", "p1_compressed"])
    assert await repo.get_by_id("p1", include_inactive=True) is None


@pytest.mark.asyncio
async def test_search_usage_and_stats(session_factory):
    repo = SqlFileRepository(session_factory)
    now = datetime.now(timezone.utc)
    await repo.create(record("a", tags=["site-a"], description="North roof", uploaded_at=now - timedelta(minutes=2)))
    await repo.create(record("b", uploaded_by="u2", is_public=True, uploaded_at=now - timedelta(minutes=1)))
    await repo.create(record("c", uploaded_by="u2", mime_type="application/pdf", category=FileCategory.DOCUMENT,
                             size_bytes=300, uploaded_at=now))
    await repo.create(record("a_thumb_150", role=ArtifactRole.thumbnail(150), parent_id="a"))

    rows, total = await repo.search(FileSearchCriteria(uploaded_by="u1", include_public=True))
    assert total == 2
    assert [r.id for r in rows] == ["b", "a"]

    rows, total = await repo.search(FileSearchCriteria(tags=["site-a"]))
    assert [r.id for r in rows] == ["a"]
    rows, total = await repo.search(FileSearchCriteria(search_term="ROOF"))
    assert total == 1
    rows, total = await repo.search(FileSearchCriteria(page=2, limit=2))
    assert total == 3 and [r.id for r in rows] == ["a"]

    usage = await repo.user_usage("u2")
    assert (usage.total_size, usage.file_count) == (400, 2)

    stats = await repo.stats()
    assert stats.total_files == 4
    assert stats.files_by_category == {"image": 3, "document": 1, "other": 0}
    assert stats.files_by_type["application/pdf"] == 1
    assert (await repo.stats(uploaded_by="u2")).total_size == 400


@pytest.mark.asyncio
async def test_access_log_and_user_lookup(session_factory):
    async with session_factory() as session:
        session.add(User(id="u1", name="Inspector", role="inspector", quota_bytes=1024, permissions=["files:read"]))
        await session.commit()

    users = SqlUserRepository(session_factory)
    user = await users.get_by_id("u1")
    assert user.quota_bytes == 1024
    assert user.can("files:read")
    assert await users.get_by_id("ghost") is None

    await SqlFileRepository(session_factory).log_access("p1", "u1", "read")


@pytest.mark.asyncio
async def test_timestamps_round_trip_as_utc(session_factory):
    repo = SqlFileRepository(session_factory)
    await repo.create(record("p1"))
    naive = await repo.create(record("p2", uploaded_at=datetime(2024, 5, 1, 12, 30)))
    await repo.soft_delete(["p1"], "u1")
    updated = await repo.update("p2", description="north wall")

    deleted = await repo.get_by_id("p1", include_inactive=True)
    assert deleted.uploaded_at.tzinfo is not None
    assert deleted.deleted_at.utcoffset() == timedelta(0)
    assert naive.uploaded_at == datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    assert updated.uploaded_at == naive.uploaded_at

    rows, total = await repo.search(FileSearchCriteria(uploaded_after=datetime(2024, 5, 1, tzinfo=timezone.utc),
                                                       uploaded_before=datetime(2024, 5, 2, tzinfo=timezone.utc)))
    assert [r.id for r in rows] == ["p2"]
