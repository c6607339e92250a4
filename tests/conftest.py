import pytest

from fakes import Harness, build_harness, make_image_bytes


@pytest.fixture
def harness(tmp_path) -> Harness:
    return build_harness(tmp_path)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")
