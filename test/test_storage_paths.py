import pytest

from genmedia.domain.enums import StorageCategory
from genmedia.services.storage_paths import (
    build_storage_path,
    ext_for_content_type,
    ext_from_url,
    sanitize_base_name,
)


def test_path_layout_is_deterministic():
    path = build_storage_path(
        owner_id="user-42",
        category=StorageCategory.generated_videos,
        base_name="Sunset Drive!.mp4",
        ext="mp4",
        timestamp_ms=1700000000000,
    )
    assert path == "users/user-42/uploads/videos/generate/1700000000000_Sunset_Drive_.mp4"


def test_every_category_has_a_path():
    for cat in StorageCategory:
        path = build_storage_path(owner_id="u", category=cat, base_name="a", ext="png", timestamp_ms=1)
        assert path.startswith("users/u/uploads/")


def test_hangul_is_kept():
    assert sanitize_base_name("노을 영상.mp4") == "노을_영상"


def test_empty_name_defaults():
    assert sanitize_base_name("") == "output"
    assert sanitize_base_name(".mp4") == "output"


def test_owner_is_required_and_cannot_escape():
    with pytest.raises(ValueError):
        build_storage_path(owner_id="", category=StorageCategory.uploads, base_name="a", ext="png")
    path = build_storage_path(owner_id="../../etc", category=StorageCategory.uploads, base_name="a", ext=None, timestamp_ms=5)
    assert path == "users/etc/uploads/files/5_a.bin"


def test_extension_helpers():
    assert ext_for_content_type("video/mp4; codecs=avc1") == "mp4"
    assert ext_for_content_type("image/jpeg") == "jpg"
    assert ext_for_content_type(None) is None
    assert ext_from_url("https://cdn.test/a/b/out.WEBP?x=1") == "webp"
    assert ext_from_url("https://cdn.test/a/b/download") is None
