"""Error taxonomy shared by every storage backend."""

from typing import Optional


class StorageError(Exception):
    """Base class for storage failures."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.message = message
        self.key = key
        self.original_error = original_error
        super().__init__(message if key is None else f"{message} (key={key!r})")


class ConfigurationError(StorageError):
    """Required backend configuration is missing or the backend is unavailable."""


class UploadError(StorageError):
    """The backend rejected an upload."""


class RetrievalFailure(StorageError):
    """The object could not be fetched from the backend."""


class DeleteError(StorageError):
    """The backend rejected a deletion."""


class RangeNotSatisfiable(StorageError):
    """The requested byte range lies outside the object."""

    def __init__(self, message: str, key: Optional[str] = None, total_size: Optional[int] = None, **kwargs):
        super().__init__(message, key=key, **kwargs)
        self.total_size = total_size
