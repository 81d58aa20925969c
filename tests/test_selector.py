"""
Tests for picking the process-wide storage backend from configuration.
"""

import importlib
import sys

import pytest

import filestore.storage as storage
from filestore.configs.config import Config
from filestore.storage import (
    DEFAULT_BACKEND,
    CloudinaryStore,
    ConfigurationError,
    LocalStore,
    S3Store,
    available_backends,
    build_store,
    resolve_backend_name,
)


def _config(tmp_path, **overrides):
    values = {
        "storage_backend": "local",
        "local_path": str(tmp_path / "uploads"),
        "s3_bucket": "",
        "cloudinary_cloud_name": "",
        "cloudinary_api_key": "",
        "cloudinary_api_secret": "",
    }
    values.update(overrides)
    return Config(**values)


@pytest.mark.parametrize("name", ["local", "LOCAL", " s3 ", "cloudinary"])
def test_known_names_resolve(name):
    assert resolve_backend_name(name) == name.strip().lower()


@pytest.mark.parametrize("name", ["ftp", "", None])
def test_unknown_names_fall_back_to_default(name, caplog):
    assert resolve_backend_name(name) == DEFAULT_BACKEND == "local"
    assert "falling back" in caplog.text


def test_unknown_backend_builds_default(tmp_path):
    store = build_store(_config(tmp_path, storage_backend="gcs"))
    assert isinstance(store, LocalStore)


def test_local_store_does_not_touch_the_filesystem_on_construction(tmp_path):
    build_store(_config(tmp_path))
    assert not (tmp_path / "uploads").exists()


def test_s3_requires_bucket(tmp_path):
    with pytest.raises(ConfigurationError, match="S3_BUCKET"):
        build_store(_config(tmp_path, storage_backend="s3"))


def test_s3_builds_with_bucket(tmp_path):
    store = build_store(_config(tmp_path, storage_backend="s3", s3_bucket="media", s3_region="us-east-1"))
    assert isinstance(store, S3Store)
    assert store.bucket == "media"


def test_cloudinary_requires_credentials(tmp_path):
    with pytest.raises(ConfigurationError):
        build_store(_config(tmp_path, storage_backend="cloudinary"))


@pytest.mark.asyncio
async def test_cloudinary_builds_with_credentials(tmp_path):
    store = build_store(
        _config(
            tmp_path,
            storage_backend="cloudinary",
            cloudinary_cloud_name="demo",
            cloudinary_api_key="key",
            cloudinary_api_secret="secret",
        )
    )
    assert isinstance(store, CloudinaryStore)
    await store.aclose()


def test_unavailable_backend_is_disabled_not_fatal(tmp_path, monkeypatch, caplog):
    monkeypatch.setattr(CloudinaryStore, "is_available", classmethod(lambda cls: False))

    backends = available_backends()
    assert backends["cloudinary"] is None
    assert backends["local"] is LocalStore
    assert "disabled" in caplog.text

    assert isinstance(build_store(_config(tmp_path)), LocalStore)
    with pytest.raises(ConfigurationError, match="not available"):
        build_store(
            _config(
                tmp_path,
                storage_backend="cloudinary",
                cloudinary_cloud_name="demo",
                cloudinary_api_key="key",
                cloudinary_api_secret="secret",
            )
        )


def test_get_store_is_a_singleton(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "get_config", lambda: _config(tmp_path))
    storage.get_store.cache_clear()
    try:
        assert storage.get_store() is storage.get_store()
    finally:
        storage.get_store.cache_clear()


def test_s3_extra_missing_disables_backend(tmp_path):
    import filestore.storage.s3 as s3_module

    try:
        with pytest.MonkeyPatch.context() as m:
            m.setitem(sys.modules, "boto3", None)
            importlib.reload(s3_module)

            assert not s3_module.S3Store.is_available()
            assert s3_module.ClientError is Exception
            with pytest.raises(ImportError, match=r"filestore\[s3\]"):
                s3_module.S3Store(bucket="assets")
            assert isinstance(build_store(_config(tmp_path)), LocalStore)
    finally:
        importlib.reload(s3_module)

    assert s3_module.S3Store.is_available()
