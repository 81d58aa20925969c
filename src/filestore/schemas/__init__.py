from .files import (
    PresignedPostRequest,
    SignedUrlRead,
    StoredFileRead,
    UploadAuthorizationRead,
)

__all__ = [
    "PresignedPostRequest",
    "SignedUrlRead",
    "StoredFileRead",
    "UploadAuthorizationRead",
]
