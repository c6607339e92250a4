import pytest

from app.application.ports.user_repo import UserDto
from app.application.services.file_validator import FileValidator
from app.application.services.quota_service import QuotaService
from app.core.config import MIB
from fakes import FakeFileRepo, FakeScanner, FakeUserRepo, make_config, make_image_bytes


def build_validator(tmp_path, scanner=None, users=None, **config_overrides):
    config = make_config(tmp_path, **config_overrides)
    files = FakeFileRepo()
    users = FakeUserRepo(users if users is not None else [
        UserDto(id="u1", name="A", role="inspector", quota_bytes=None),
        UserDto(id="small", name="B", role="viewer", quota_bytes=100),
    ])
    quota = QuotaService(file_repo=files, user_repo=users, config=config)
    return FileValidator(policy=config.policy, quota_service=quota, scanner=scanner or FakeScanner()), files


@pytest.mark.asyncio
async def test_valid_image_passes_with_detected_type(tmp_path):
    validator, _ = build_validator(tmp_path)
    result = await validator.validate(make_image_bytes("PNG", size=(8, 8)), "image/jpeg", "a.jpg", "u1")
    assert result.is_valid
    assert result.errors == []
    assert result.detected_mime_type == "image/png"


@pytest.mark.asyncio
async def test_oversized_file_rejected(tmp_path):
    validator, _ = build_validator(tmp_path, max_size=10)
    result = await validator.validate(b"hello world, too long", "text/plain", "a.txt", "u1")
    assert not result.is_valid
    assert any("exceeds maximum allowed size" in e for e in result.errors)


@pytest.mark.asyncio
async def test_spoofed_content_type_rejected(tmp_path):
    validator, _ = build_validator(tmp_path)
    result = await validator.validate(b"MZ\x90\x00" + b"\x00" * 100, "image/jpeg", "photo.jpg", "u1")
    assert not result.is_valid
    assert "File type application/x-msdownload is not allowed" in result.errors


@pytest.mark.asyncio
async def test_empty_file_rejected(tmp_path):
    validator, _ = build_validator(tmp_path)
    result = await validator.validate(b"", "text/plain", "empty.txt", "u1")
    assert "File is empty" in result.errors


@pytest.mark.asyncio
async def test_malware_flagged_content_rejected(tmp_path):
    validator, _ = build_validator(tmp_path, scanner=FakeScanner(flagged=b"VIRUS"))
    result = await validator.validate(b"plain text with VIRUS inside", "text/plain", "a.txt", "u1")
    assert not result.is_valid
    assert "File failed security scan: Test.Virus" in result.errors


@pytest.mark.asyncio
async def test_scanner_outage_fails_closed(tmp_path):
    validator, _ = build_validator(tmp_path, scanner=FakeScanner(fail=True))
    result = await validator.validate(b"plain text", "text/plain", "a.txt", "u1")
    assert result.errors == ["Malware scan failed"]


@pytest.mark.asyncio
async def test_quota_exceeded_rejected(tmp_path):
    validator, _ = build_validator(tmp_path)
    result = await validator.validate(b"x" * 101, "text/plain", "a.txt", "small")
    assert not result.is_valid
    assert any("exceed storage quota" in e for e in result.errors)


@pytest.mark.asyncio
async def test_quota_exactly_full_is_allowed(tmp_path):
    validator, _ = build_validator(tmp_path)
    result = await validator.validate(b"x" * 100, "text/plain", "a.txt", "small")
    assert result.is_valid


@pytest.mark.asyncio
async def test_unknown_user_cannot_pass_quota_check(tmp_path):
    validator, _ = build_validator(tmp_path)
    result = await validator.validate(b"hello", "text/plain", "a.txt", "ghost")
    assert result.errors == ["Failed to check user quota"]


@pytest.mark.asyncio
async def test_errors_are_accumulated(tmp_path):
    validator, _ = build_validator(tmp_path, scanner=FakeScanner(flagged=b"MZ"), max_size=8)
    result = await validator.validate(b"MZ" + b"\x00" * 20, "image/png", "a.png", "ghost")
    assert len(result.errors) == 4


@pytest.mark.asyncio
async def test_role_default_and_override_quota(tmp_path):
    config = make_config(tmp_path)
    files = FakeFileRepo()
    users = FakeUserRepo([
        UserDto(id="v", name="V", role="viewer", quota_bytes=None),
        UserDto(id="o", name="O", role="viewer", quota_bytes=7 * MIB),
        UserDto(id="x", name="X", role="contractor", quota_bytes=None),
    ])
    quota = QuotaService(file_repo=files, user_repo=users, config=config)
    assert (await quota.get_quota("v")).limit == 500 * MIB
    assert (await quota.get_quota("o")).limit == 7 * MIB
    assert (await quota.get_quota("x")).limit == 500 * MIB
    assert await quota.get_quota("nobody") is None
