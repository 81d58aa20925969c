# filestore/storage/local.py
import asyncio
import logging
import mimetypes
import os
import shutil
import time
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Dict, Mapping, Optional
from urllib.parse import quote, urlencode, urljoin

from .authorizer import hmac_signature, verify_hmac_signature
from .base import (
    CHUNK_SIZE,
    BaseStore,
    Body,
    ByteRange,
    FileStream,
    UploadAuthorization,
    content_range,
    drain_body,
)
from .errors import ConfigurationError, DeleteError, RangeNotSatisfiable, UploadError

logger = logging.getLogger("filestore.local")

UPLOAD_FIELDS = ("key", "acl", "content_type", "max_upload_size", "timestamp")

# Per-object ACLs live in a reserved directory beside the objects
ACL_DIR = ".acl"
PUBLIC_READ = "public-read"


class LocalStore(BaseStore):
    """
    Stores files under <base_path>/<object_key>
    where *object_key* can include slashes (e.g. uploads/2025/07/uuid.pdf).

    Signed URLs and upload authorizations are HMAC-signed with
    *signing_secret*; the application verifies them when serving or
    accepting files. Objects are private unless stored with the
    ``public-read`` ACL, which is recorded under ``<base_path>/.acl/``.
    """

    name = "local"

    def __init__(
        self,
        base_path: str = "/var/_uploads",
        base_url: str = "/files/",
        signing_secret: str = "",
        default_expires: int = 60,
    ):
        self.root = Path(base_path).expanduser().resolve()
        self.acl_root = self.root / ACL_DIR
        self.base_url = base_url.rstrip("/") + "/"
        self._secret = signing_secret
        self.default_expires = default_expires

    # ---------- helpers ---------- #
    def _full(self, key: str) -> Path:
        path = self.root.joinpath(key).resolve()
        if not path.is_relative_to(self.root):
            raise ValueError(f"Object key escapes storage root: {key}")
        if path == self.acl_root or path.is_relative_to(self.acl_root):
            raise ValueError(f"Object key uses a reserved path: {key}")
        return path

    def _acl_path(self, key: str) -> Path:
        return self.acl_root.joinpath(self._full(key).relative_to(self.root))

    def _write_acl(self, key: str, acl: Optional[str]) -> None:
        marker = self._acl_path(key)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.write_text(acl or "private")

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigurationError("LOCAL_SIGNING_SECRET is required for signed local URLs")
        return self._secret

    @staticmethod
    def _write(body: Body, dst: Path) -> None:
        dst.parent.mkdir(parents=True, exist_ok=True)
        with open(dst, "wb") as out:
            shutil.copyfileobj(body, out, CHUNK_SIZE)

    @staticmethod
    async def _read_chunks(fh: BinaryIO, remaining: Optional[int]) -> AsyncIterator[bytes]:
        while remaining is None or remaining > 0:
            size = CHUNK_SIZE if remaining is None else min(CHUNK_SIZE, remaining)
            chunk = await asyncio.to_thread(fh.read, size)
            if not chunk:
                break
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk

    # ---------- API ---------- #
    async def store(
        self,
        body: Body,
        key: str,
        content_type: Optional[str] = None,
        acl: Optional[str] = None,
    ) -> str:
        dst = self._full(key)
        try:
            if hasattr(body, "read"):
                await asyncio.to_thread(self._write, body, dst)
            else:
                data = await drain_body(body)
                await asyncio.to_thread(dst.parent.mkdir, parents=True, exist_ok=True)
                await asyncio.to_thread(dst.write_bytes, data)
            await asyncio.to_thread(self._write_acl, key, acl)
        except OSError as e:
            logger.error(
                f"Error writing {key} to local storage: {e}",
                extra={"key": key, "content_type": content_type, "operation": "store"},
            )
            raise UploadError("Local write failed", key=key, original_error=e) from e
        return self.get_url_for_key(key)

    async def get_file_stream(
        self, key: str, range: Optional[ByteRange] = None
    ) -> Optional[FileStream]:
        try:
            src = self._full(key)
            fh = await asyncio.to_thread(open, src, "rb")
        except (OSError, ValueError) as e:
            logger.error(
                f"Error opening {key} from local storage: {e}",
                extra={"key": key, "operation": "get_file_stream"},
            )
            return None

        size = (await asyncio.to_thread(os.fstat, fh.fileno())).st_size
        remaining = size
        partial = None
        if range is not None and not range.is_full:
            offsets = range.resolve(size)
            if offsets is None:
                await asyncio.to_thread(fh.close)
                logger.warning(
                    f"Unsatisfiable range {range.header()} for {key}",
                    extra={"key": key, "operation": "get_file_stream"},
                )
                raise RangeNotSatisfiable("Range not satisfiable", key=key, total_size=size)
            first, last = offsets
            await asyncio.to_thread(fh.seek, first)
            remaining = last - first + 1
            partial = content_range(first, last, size)

        async def close() -> None:
            await asyncio.to_thread(fh.close)

        return FileStream(
            self._read_chunks(fh, remaining),
            close,
            content_type=mimetypes.guess_type(key)[0],
            content_length=remaining,
            content_range=partial,
        )

    async def is_public(self, key: str) -> bool:
        """Whether *key* was stored with the ``public-read`` ACL."""
        try:
            acl = await asyncio.to_thread(self._acl_path(key).read_text)
        except (OSError, ValueError):
            return False
        return acl.strip() == PUBLIC_READ

    async def delete_file(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._acl_path(key).unlink, True)
            await asyncio.to_thread(self._full(key).unlink)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(
                f"Error deleting {key} from local storage: {e}",
                extra={"key": key, "operation": "delete_file"},
            )
            raise DeleteError("Local delete failed", key=key, original_error=e) from e

    def get_url_for_key(self, key: str) -> str:
        return urljoin(self.base_url, quote(key))

    async def get_signed_url(self, key: str, expires_in: Optional[int] = None) -> str:
        expires = int(time.time()) + (self.default_expires if expires_in is None else expires_in)
        signature = hmac_signature({"key": key, "expires": expires}, self._require_secret())
        query = urlencode({"expires": expires, "signature": signature})
        return f"{self.get_url_for_key(key)}?{query}"

    def verify_signed_url(self, key: str, expires: int, signature: str) -> bool:
        if expires < time.time():
            return False
        return verify_hmac_signature(
            {"key": key, "expires": expires}, signature, self._require_secret()
        )

    async def get_presigned_post(
        self,
        key: str,
        acl: str,
        max_upload_size: int,
        content_type: str,
    ) -> UploadAuthorization:
        fields = {
            "key": key,
            "acl": acl,
            "content_type": content_type,
            "max_upload_size": str(max_upload_size),
            "timestamp": str(int(time.time())),
        }
        fields["signature"] = hmac_signature(fields, self._require_secret())
        return UploadAuthorization(url=self.get_upload_url(), fields=fields)

    def verify_upload(self, fields: Mapping[str, str], max_age: Optional[int] = None) -> bool:
        """Check fields posted back from ``get_presigned_post``."""
        signed: Dict[str, str] = {name: fields.get(name, "") for name in UPLOAD_FIELDS}
        if not verify_hmac_signature(signed, fields.get("signature", ""), self._require_secret()):
            return False
        try:
            issued = int(signed["timestamp"])
        except ValueError:
            return False
        return time.time() - issued <= (self.default_expires if max_age is None else max_age)

    def get_upload_url(self, server_side: bool = False) -> str:
        return urljoin(self.base_url, "upload")
