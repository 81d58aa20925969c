"""
Pure helpers that map an object key onto backend addressing.

Every function here is total: any string (or ``None`` where allowed) yields a
value and the same input always yields the same output. Upload signatures are
computed over values derived here, so they must be byte-for-byte reproducible.
"""

import posixpath
from enum import StrEnum
from typing import Optional


class ResourceType(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    RAW = "raw"


IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg"})
VIDEO_EXTENSIONS = frozenset({"mp4", "avi", "mov", "wmv", "flv", "webm"})

IMAGE_TRANSFORMATION = "f_auto,q_auto"


def classify(content_type: Optional[str] = None) -> ResourceType:
    """Resource type from a declared MIME type; anything unknown is raw."""
    if not content_type:
        return ResourceType.RAW
    if content_type.startswith("image/"):
        return ResourceType.IMAGE
    if content_type.startswith("video/"):
        return ResourceType.VIDEO
    return ResourceType.RAW


def extension_of(key: str) -> str:
    """Lower-cased last extension of *key* without the dot, or ``""``."""
    _, ext = posixpath.splitext(key)
    return ext[1:].lower()


def classify_by_extension(key: str) -> ResourceType:
    ext = extension_of(key)
    if ext in IMAGE_EXTENSIONS:
        return ResourceType.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return ResourceType.VIDEO
    return ResourceType.RAW


def folder_of(key: str) -> str:
    """``"a/b/c.png"`` -> ``"a/b"``; a bare file name has no folder."""
    return posixpath.dirname(key)


def identifier_of(key: str) -> str:
    """Strip only the final extension: ``"a/b.tar.gz"`` -> ``"a/b.tar"``."""
    root, ext = posixpath.splitext(key)
    return root if ext else key


def asset_name_of(key: str) -> str:
    """
    Public id to send next to ``folder_of(key)``: ``"a/b/c.png"`` -> ``"c"``.

    Cloudinary prefixes the folder itself, so the stored asset ends up
    addressed by ``identifier_of(key)``.
    """
    return posixpath.basename(identifier_of(key))


def transformation_for(resource_type: ResourceType) -> Optional[str]:
    # Delivery optimisations only make sense for images
    if resource_type is ResourceType.IMAGE:
        return IMAGE_TRANSFORMATION
    return None
