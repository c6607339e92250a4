import pytest

from app.exceptions import FileStorageError
from app.infrastructure.storage.local_storage import LocalStorageRepository


@pytest.fixture
def storage(tmp_path):
    return LocalStorageRepository(str(tmp_path / "uploads"), str(tmp_path / "backups"))


@pytest.mark.asyncio
async def test_save_read_and_stream(storage):
    path = await storage.save_bytes("documents", "a.txt", b"hello world")
    assert path == "documents/a.txt"
    assert await storage.read_bytes(path) == b"hello world"
    assert await storage.size(path) == 11
    chunks = [c async for c in storage.open_stream(path, chunk_size=4)]
    assert chunks == [b"hell", b"o wo", b"rld"]


@pytest.mark.asyncio
async def test_paths_outside_root_are_rejected(storage):
    with pytest.raises(FileStorageError):
        await storage.save_bytes("../escape", "a.txt", b"x")
    with pytest.raises(FileStorageError):
        await storage.read_bytes("../../etc/passwd")


@pytest.mark.asyncio
async def test_missing_file_behaviour(storage):
    assert await storage.exists("images/nope.jpg") is False
    assert await storage.size("images/nope.jpg") is None
    assert await storage.delete("images/nope.jpg") is False
    with pytest.raises(FileNotFoundError):
        await storage.read_bytes("images/nope.jpg")


@pytest.mark.asyncio
async def test_move_and_copy(storage):
    path = await storage.save_bytes("other", "f.bin", b"\x00\x01")
    moved = await storage.move(path, "archive/2024")
    assert moved == "archive/2024/f.bin"
    assert not await storage.exists(path)

    copied = await storage.copy(moved, "other", "g.bin")
    assert await storage.read_bytes(copied) == b"\x00\x01"
    assert await storage.exists(moved)


@pytest.mark.asyncio
async def test_move_refuses_to_overwrite(storage):
    first = await storage.save_bytes("a", "same.txt", b"1")
    await storage.save_bytes("b", "same.txt", b"2")
    with pytest.raises(FileStorageError):
        await storage.move(first, "b")


@pytest.mark.asyncio
async def test_backup_copies_under_backup_root(storage, tmp_path):
    path = await storage.save_bytes("documents", "report.pdf", b"%PDF-1.4")
    dest = await storage.backup(path, "weekly")
    assert dest.startswith(str((tmp_path / "backups" / "weekly").resolve()))
    assert dest.endswith("_report.pdf")
    with open(dest, "rb") as f:
        assert f.read() == b"%PDF-1.4"
    with pytest.raises(FileStorageError):
        await storage.backup(path, "../../outside")
