"""
Tests for object key classification and addressing helpers.
"""

import pytest

from filestore.storage.keys import (
    ResourceType,
    asset_name_of,
    classify,
    classify_by_extension,
    extension_of,
    folder_of,
    identifier_of,
    transformation_for,
)


@pytest.mark.parametrize(
    "content_type, expected",
    [
        ("image/png", ResourceType.IMAGE),
        ("image/svg+xml", ResourceType.IMAGE),
        ("video/mp4", ResourceType.VIDEO),
        ("application/pdf", ResourceType.RAW),
        ("text/plain", ResourceType.RAW),
        ("", ResourceType.RAW),
        (None, ResourceType.RAW),
    ],
)
def test_classify_by_content_type(content_type, expected):
    assert classify(content_type) is expected


def test_classify_without_argument_is_raw():
    assert classify() is ResourceType.RAW


@pytest.mark.parametrize("ext", ["jpg", "jpeg", "png", "gif", "bmp", "webp", "svg"])
def test_image_extensions_case_insensitive(ext):
    assert classify_by_extension(f"a/b/file.{ext}") is ResourceType.IMAGE
    assert classify_by_extension(f"file.{ext.upper()}") is ResourceType.IMAGE


@pytest.mark.parametrize("ext", ["mp4", "avi", "mov", "wmv", "flv", "webm"])
def test_video_extensions_case_insensitive(ext):
    assert classify_by_extension(f"clips/intro.{ext}") is ResourceType.VIDEO
    assert classify_by_extension(f"intro.{ext.upper()}") is ResourceType.VIDEO


@pytest.mark.parametrize("key", ["report.pdf", "archive.tar.gz", "README", "dir.png/notes"])
def test_other_keys_are_raw(key):
    assert classify_by_extension(key) is ResourceType.RAW


def test_classifiers_agree_on_canonical_extensions():
    pairs = {
        "png": "image/png",
        "jpg": "image/jpeg",
        "gif": "image/gif",
        "webp": "image/webp",
        "svg": "image/svg+xml",
        "mp4": "video/mp4",
        "mov": "video/quicktime",
        "webm": "video/webm",
        "txt": "text/plain",
    }
    for ext, content_type in pairs.items():
        assert classify_by_extension(f"x.{ext}") is classify(content_type)


def test_folder_of():
    assert folder_of("a/b/c.png") == "a/b"
    assert folder_of("c.png") == ""
    assert folder_of("") == ""


def test_identifier_of_strips_only_last_extension():
    assert identifier_of("a/b/c.png") == "a/b/c"
    assert identifier_of("backup.tar.gz") == "backup.tar"
    assert identifier_of("notes") == "notes"
    assert identifier_of("v1.2/readme") == "v1.2/readme"


def test_identifier_of_is_idempotent_without_extension():
    for key in ["a/b/c", "plain", "uploads/2025/07/uuid"]:
        assert identifier_of(identifier_of(key)) == identifier_of(key) == key


def test_extension_of():
    assert extension_of("photos/Cat.JPG") == "jpg"
    assert extension_of("noext") == ""


def test_transformation_only_for_images():
    assert transformation_for(ResourceType.IMAGE) == "f_auto,q_auto"
    assert transformation_for(ResourceType.VIDEO) is None
    assert transformation_for(ResourceType.RAW) is None


def test_asset_name_plus_folder_rebuilds_identifier():
    assert asset_name_of("reports/2025/q1.pdf") == "q1"
    assert asset_name_of("notes") == "notes"
    for key in ("reports/2025/q1.pdf", "a/b.tar.gz", "logo.png", "v1.2/readme"):
        folder = folder_of(key)
        rebuilt = f"{folder}/{asset_name_of(key)}" if folder else asset_name_of(key)
        assert rebuilt == identifier_of(key)
