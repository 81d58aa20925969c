import asyncio
import io
import logging
import re
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import quote

try:
    import boto3
    from botocore.exceptions import BotoCoreError, ClientError
except ImportError:
    # boto3 not installed; S3Store refuses to construct without it
    boto3 = None
    BotoCoreError = ClientError = Exception

from .base import CHUNK_SIZE, BaseStore, Body, ByteRange, FileStream, UploadAuthorization, drain_body
from .errors import DeleteError, RangeNotSatisfiable, UploadError

logger = logging.getLogger("filestore.s3")

NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)$")


def _status_code(error: Exception) -> Optional[int]:
    response = getattr(error, "response", None) or {}
    return response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def _object_size(error: Exception) -> Optional[int]:
    # S3 reports the object size as "bytes */<size>" on 416 responses
    response = getattr(error, "response", None) or {}
    header = response.get("ResponseMetadata", {}).get("HTTPHeaders", {}).get("content-range", "")
    match = CONTENT_RANGE_TOTAL.search(header)
    return int(match.group(1)) if match else None


class S3Store(BaseStore):
    """
    Wraps any S3-compatible service.
    Credentials come from the usual boto3 chain (environment, profile,
    instance role); MinIO and friends need *endpoint_url*.
    A pre-built client may be passed in instead.
    """

    name = "s3"

    @classmethod
    def is_available(cls) -> bool:
        return boto3 is not None

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        public: bool = False,
        prefix: str = "",
        default_expires: int = 60,
        client: Any = None,
    ):
        if boto3 is None:
            raise ImportError(
                "S3 storage dependencies not installed. "
                "Install with: pip install 'filestore[s3]'"
            )
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.prefix = prefix.strip("/")
        self.default_expires = default_expires
        self.public = public  # if True: return raw https URL instead of presigned
        if client is None:
            extra_cfg = {"region_name": region} if region else {}
            client = boto3.client("s3", endpoint_url=endpoint_url, **extra_cfg)
        self.s3 = client

    # ---------- helpers ---------- #
    def _key(self, object_key: str) -> str:
        return f"{self.prefix}/{object_key}" if self.prefix else object_key

    def _bucket_url(self) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}"
        if self.region and self.region != "us-east-1":
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com"
        return f"https://{self.bucket}.s3.amazonaws.com"

    async def _iter_body(self, body: Any) -> AsyncIterator[bytes]:
        while True:
            chunk = await asyncio.to_thread(body.read, CHUNK_SIZE)
            if not chunk:
                break
            yield chunk

    # ---------- API ---------- #
    async def store(
        self,
        body: Body,
        key: str,
        content_type: Optional[str] = None,
        acl: Optional[str] = None,
    ) -> str:
        extra_args: Dict[str, str] = {}
        if content_type:
            extra_args["ContentType"] = content_type
        if acl:
            extra_args["ACL"] = acl
        fileobj = body if hasattr(body, "read") else io.BytesIO(await drain_body(body))
        try:
            await asyncio.to_thread(
                self.s3.upload_fileobj,
                fileobj,
                self.bucket,
                self._key(key),
                ExtraArgs=extra_args or None,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                f"Error uploading to S3: {e}",
                extra={
                    "key": key,
                    "content_type": content_type,
                    "operation": "store",
                    "status_code": _status_code(e),
                },
            )
            raise UploadError("S3 upload failed", key=key, original_error=e) from e
        return self.get_url_for_key(key)

    async def get_file_stream(
        self, key: str, range: Optional[ByteRange] = None
    ) -> Optional[FileStream]:
        params = {"Bucket": self.bucket, "Key": self._key(key)}
        if range is not None and range.header():
            params["Range"] = range.header()
        try:
            response = await asyncio.to_thread(self.s3.get_object, **params)
        except (BotoCoreError, ClientError) as e:
            code = getattr(e, "response", {}).get("Error", {}).get("Code")
            if code == "InvalidRange":
                logger.warning(
                    f"Unsatisfiable range {params.get('Range')} for {key}",
                    extra={"key": key, "operation": "get_file_stream", "status_code": 416},
                )
                raise RangeNotSatisfiable(
                    "Range not satisfiable", key=key, total_size=_object_size(e)
                ) from e
            log = logger.warning if code in NOT_FOUND_CODES else logger.error
            log(
                f"Error getting file stream from S3: {e}",
                extra={
                    "key": key,
                    "operation": "get_file_stream",
                    "status_code": _status_code(e),
                },
            )
            return None

        body = response["Body"]

        async def close() -> None:
            await asyncio.to_thread(body.close)

        return FileStream(
            self._iter_body(body),
            close,
            content_type=response.get("ContentType"),
            content_length=response.get("ContentLength"),
            content_range=response.get("ContentRange"),
        )

    async def delete_file(self, key: str) -> None:
        # S3 answers 204 for keys that do not exist
        try:
            await asyncio.to_thread(
                self.s3.delete_object, Bucket=self.bucket, Key=self._key(key)
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                f"Error deleting file from S3: {e}",
                extra={"key": key, "operation": "delete_file", "status_code": _status_code(e)},
            )
            raise DeleteError("S3 delete failed", key=key, original_error=e) from e

    def get_url_for_key(self, key: str) -> str:
        return f"{self._bucket_url()}/{quote(self._key(key))}"

    async def get_signed_url(self, key: str, expires_in: Optional[int] = None) -> str:
        if self.public:
            # Works if bucket policy allows public read
            return self.get_url_for_key(key)
        return self.s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": self._key(key)},
            ExpiresIn=self.default_expires if expires_in is None else expires_in,
        )

    async def get_presigned_post(
        self,
        key: str,
        acl: str,
        max_upload_size: int,
        content_type: str,
    ) -> UploadAuthorization:
        fields = {"acl": acl, "Cache-Control": "max-age=31557600"}
        conditions: list = [
            {"acl": acl},
            ["content-length-range", 0, max_upload_size],
            {"Cache-Control": "max-age=31557600"},
        ]
        if content_type:
            fields["Content-Type"] = content_type
            conditions.append({"Content-Type": content_type})
        post = self.s3.generate_presigned_post(
            Bucket=self.bucket,
            Key=self._key(key),
            Fields=fields,
            Conditions=conditions,
            ExpiresIn=self.default_expires,
        )
        return UploadAuthorization(
            url=post["url"],
            fields={name: str(value) for name, value in post["fields"].items()},
        )

    def get_upload_url(self, server_side: bool = False) -> str:
        return self._bucket_url()
