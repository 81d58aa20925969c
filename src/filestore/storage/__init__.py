import logging
from functools import lru_cache
from typing import Callable, Dict, Optional, Type

from filestore.configs.config import Config, get_config

from .base import BaseStore, ByteRange, FileHandle, FileStream, UploadAuthorization
from .cloudinary import CloudinaryStore
from .errors import (
    ConfigurationError,
    DeleteError,
    RangeNotSatisfiable,
    RetrievalFailure,
    StorageError,
    UploadError,
)
from .local import LocalStore
from .s3 import S3Store

logger = logging.getLogger("filestore.storage")

DEFAULT_BACKEND = "local"

BACKENDS: Dict[str, Type[BaseStore]] = {
    LocalStore.name: LocalStore,
    S3Store.name: S3Store,
    CloudinaryStore.name: CloudinaryStore,
}


def _build_local(config: Config) -> BaseStore:
    return LocalStore(
        base_path=config.local_path,
        base_url=config.local_base_url,
        signing_secret=config.local_signing_secret,
        default_expires=config.signed_url_expires,
    )


def _build_s3(config: Config) -> BaseStore:
    if not config.s3_bucket:
        raise ConfigurationError("S3 storage backend requires S3_BUCKET")
    return S3Store(
        bucket=config.s3_bucket,
        region=config.s3_region or None,
        endpoint_url=config.s3_endpoint or None,  # leave empty for AWS
        prefix=config.s3_prefix,
        public=config.s3_public,
        default_expires=config.signed_url_expires,
    )


def _build_cloudinary(config: Config) -> BaseStore:
    return CloudinaryStore(
        cloud_name=config.cloudinary_cloud_name,
        api_key=config.cloudinary_api_key,
        api_secret=config.cloudinary_api_secret,
        default_expires=config.signed_url_expires,
        timeout=config.http_timeout,
    )


BUILDERS: Dict[str, Callable[[Config], BaseStore]] = {
    "local": _build_local,
    "s3": _build_s3,
    "cloudinary": _build_cloudinary,
}


def resolve_backend_name(name: Optional[str]) -> str:
    """Map a configured name onto a known backend, falling back to the default."""
    normalized = (name or "").strip().lower()
    if normalized in BACKENDS:
        return normalized
    logger.warning(
        f"Unknown storage backend {name!r}, falling back to {DEFAULT_BACKEND!r}"
    )
    return DEFAULT_BACKEND


def available_backends() -> Dict[str, Optional[Type[BaseStore]]]:
    """Every registered backend, or ``None`` where its SDK is missing."""
    available: Dict[str, Optional[Type[BaseStore]]] = {}
    for name, store_cls in BACKENDS.items():
        if store_cls.is_available():
            available[name] = store_cls
        else:
            logger.warning(f"Storage backend {name!r} disabled: SDK not installed")
            available[name] = None
    return available


def build_store(config: Config) -> BaseStore:
    name = resolve_backend_name(config.storage_backend)
    if available_backends().get(name) is None:
        raise ConfigurationError(f"Storage backend {name!r} is not available")
    try:
        store = BUILDERS[name](config)
    except ConfigurationError:
        raise
    except (ImportError, ValueError) as e:
        raise ConfigurationError(
            f"Storage backend {name!r} could not be constructed: {e}", original_error=e
        ) from e
    logger.info(f"Using {name} storage backend")
    return store


@lru_cache
def get_store() -> BaseStore:
    return build_store(get_config())


__all__ = [
    "BaseStore",
    "ByteRange",
    "CloudinaryStore",
    "ConfigurationError",
    "DEFAULT_BACKEND",
    "DeleteError",
    "FileHandle",
    "FileStream",
    "LocalStore",
    "RangeNotSatisfiable",
    "RetrievalFailure",
    "S3Store",
    "StorageError",
    "UploadAuthorization",
    "UploadError",
    "available_backends",
    "build_store",
    "get_store",
    "resolve_backend_name",
]
