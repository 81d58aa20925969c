# filestore/storage/cloudinary.py
import asyncio
import base64
import logging
import time
from typing import Any, Dict, Optional

import httpx

try:
    import cloudinary
    import cloudinary.uploader
    import cloudinary.utils
    from cloudinary.exceptions import Error as CloudinaryError
except ImportError:
    # Cloudinary SDK not installed; an injected client may still raise anything
    cloudinary = None
    CloudinaryError = Exception

from .authorizer import UploadAuthorizer
from .base import BaseStore, Body, ByteRange, FileStream, UploadAuthorization, drain_body
from .errors import ConfigurationError, DeleteError, RangeNotSatisfiable, UploadError
from .keys import (
    ResourceType,
    asset_name_of,
    classify,
    classify_by_extension,
    extension_of,
    folder_of,
    identifier_of,
)

logger = logging.getLogger("filestore.cloudinary")

API_BASE_URL = "https://api.cloudinary.com/v1_1"


def _total_size(header: Optional[str]) -> Optional[int]:
    # "bytes */1234" on 416 responses
    _, _, total = (header or "").rpartition("/")
    return int(total) if total.isdigit() else None


class CloudinaryClient:
    """
    Thin adapter over the Cloudinary SDK.

    Credentials are passed on every call instead of through
    ``cloudinary.config()``, so several accounts can live in one process
    and tests can swap in a fake with the same methods.
    """

    def __init__(self, cloud_name: str, api_key: str, api_secret: str):
        if cloudinary is None:
            raise ImportError(
                "Cloudinary dependencies not installed. "
                "Install with: pip install 'filestore[cloudinary]'"
            )
        self.cloud_name = cloud_name
        self._credentials = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
        }

    def upload(self, file: str, **options) -> Dict[str, Any]:
        return cloudinary.uploader.upload(file, **options, **self._credentials)

    def destroy(self, public_id: str, **options) -> Dict[str, Any]:
        return cloudinary.uploader.destroy(public_id, **options, **self._credentials)

    def url(self, public_id: str, **options) -> str:
        url, _ = cloudinary.utils.cloudinary_url(
            public_id, cloud_name=self.cloud_name, **options
        )
        return url

    def private_download_url(self, public_id: str, format: str, **options) -> str:
        return cloudinary.utils.private_download_url(
            public_id, format, **options, **self._credentials
        )

    def sign(self, params: Dict[str, Any]) -> str:
        return cloudinary.utils.api_sign_request(params, self._credentials["api_secret"])


class CloudinaryStore(BaseStore):
    """
    Stores files as Cloudinary assets.

    The object key maps to a public id (key minus extension) and a
    resource type (image, video or raw). Reads go over plain HTTPS to the
    delivery URL.
    """

    name = "cloudinary"

    @classmethod
    def is_available(cls) -> bool:
        return cloudinary is not None

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        default_expires: int = 60,
        client: Optional[CloudinaryClient] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        missing = [
            name
            for name, value in (
                ("CLOUDINARY_CLOUD_NAME", cloud_name),
                ("CLOUDINARY_API_KEY", api_key),
                ("CLOUDINARY_API_SECRET", api_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Cloudinary storage backend requires: {', '.join(missing)}"
            )
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.default_expires = default_expires
        self.client = client or CloudinaryClient(cloud_name, api_key, api_secret)
        self._http = http or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self.authorizer = UploadAuthorizer(
            api_key=api_key,
            sign=self.client.sign,
            target_url=self._upload_target,
        )

    # ---------- helpers ---------- #
    def _upload_target(self, resource_type: ResourceType) -> str:
        return f"{API_BASE_URL}/{self.cloud_name}/{resource_type.value}/upload"

    # ---------- API ---------- #
    async def store(
        self,
        body: Body,
        key: str,
        content_type: Optional[str] = None,
        acl: Optional[str] = None,
    ) -> str:
        try:
            data = await drain_body(body)
            data_uri = (
                f"data:{content_type or 'application/octet-stream'};base64,"
                f"{base64.b64encode(data).decode('ascii')}"
            )
            result = await asyncio.to_thread(
                self.client.upload,
                data_uri,
                public_id=asset_name_of(key),
                resource_type=classify(content_type).value,
                folder=folder_of(key),
                access_mode="public" if acl == "public-read" else "authenticated",
            )
        except CloudinaryError as e:
            logger.error(
                f"Error uploading to Cloudinary: {e}",
                extra={"key": key, "content_type": content_type, "operation": "store"},
            )
            raise UploadError("Cloudinary upload failed", key=key, original_error=e) from e
        return result["secure_url"]

    async def delete_file(self, key: str) -> None:
        try:
            result = await asyncio.to_thread(
                self.client.destroy,
                identifier_of(key),
                resource_type=classify_by_extension(key).value,
            )
        except CloudinaryError as e:
            logger.error(
                f"Error deleting file from Cloudinary: {e}",
                extra={"key": key, "operation": "delete_file"},
            )
            raise DeleteError("Cloudinary delete failed", key=key, original_error=e) from e

        outcome = (result or {}).get("result")
        if outcome == "not found":
            logger.debug(f"Cloudinary asset already absent: {key}", extra={"key": key})
            return
        if outcome != "ok":
            logger.error(
                f"Cloudinary rejected delete: {outcome}",
                extra={"key": key, "operation": "delete_file"},
            )
            raise DeleteError(f"Cloudinary rejected delete: {outcome}", key=key)

    def get_url_for_key(self, key: str) -> str:
        return self.client.url(
            identifier_of(key),
            resource_type=classify_by_extension(key).value,
            secure=True,
            version=1,
        )

    async def get_signed_url(self, key: str, expires_in: Optional[int] = None) -> str:
        expires_at = int(time.time()) + (self.default_expires if expires_in is None else expires_in)
        return self.client.private_download_url(
            identifier_of(key),
            extension_of(key),
            resource_type=classify_by_extension(key).value,
            expires_at=expires_at,
        )

    async def get_presigned_post(
        self,
        key: str,
        acl: str,
        max_upload_size: int,
        content_type: str,
    ) -> UploadAuthorization:
        # acl and size limits are not part of Cloudinary's signed upload parameters
        return self.authorizer.authorize(key, content_type)

    def get_upload_url(self, server_side: bool = False) -> str:
        return f"{API_BASE_URL}/{self.cloud_name}/auto/upload"

    async def get_file_stream(
        self, key: str, range: Optional[ByteRange] = None
    ) -> Optional[FileStream]:
        headers = {}
        if range is not None and range.header():
            headers["Range"] = range.header()

        try:
            request = self._http.build_request("GET", self.get_url_for_key(key), headers=headers)
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error(
                f"Error getting file stream from Cloudinary: {e}",
                extra={"key": key, "operation": "get_file_stream"},
            )
            return None

        if response.status_code == 416:
            await response.aclose()
            logger.warning(
                f"Unsatisfiable range {headers.get('Range')} for {key}",
                extra={"key": key, "operation": "get_file_stream", "status_code": 416},
            )
            raise RangeNotSatisfiable(
                "Range not satisfiable",
                key=key,
                total_size=_total_size(response.headers.get("content-range")),
            )

        if not response.is_success:
            await response.aclose()
            logger.error(
                f"Error getting file stream from Cloudinary: HTTP {response.status_code}",
                extra={
                    "key": key,
                    "operation": "get_file_stream",
                    "status_code": response.status_code,
                },
            )
            return None

        length = response.headers.get("content-length")
        return FileStream(
            response.aiter_bytes(),
            response.aclose,
            content_type=response.headers.get("content-type"),
            content_length=int(length) if length else None,
            # Servers may ignore Range and answer 200 with the whole asset
            content_range=(
                response.headers.get("content-range") if response.status_code == 206 else None
            ),
        )

    async def aclose(self) -> None:
        await self._http.aclose()
