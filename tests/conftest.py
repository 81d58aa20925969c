"""Shared fixtures and in-memory fakes for the storage SDKs."""

import base64
import io
import re

import httpx
import pytest
from botocore.exceptions import ClientError

import cloudinary.exceptions
import cloudinary.utils

from filestore.storage.cloudinary import CloudinaryStore
from filestore.storage.local import LocalStore
from filestore.storage.s3 import S3Store

# 1x1 pixel PNG
PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

CLOUD_NAME = "demo"
API_KEY = "123456789012345"
API_SECRET = "top-secret-value"


def slice_range(data: bytes, header: str):
    """Apply a ``bytes=a-b`` / ``bytes=-n`` header the way HTTP servers do.

    Returns ``(chunk, content_range)``, or ``None`` when unsatisfiable.
    """
    start, end = header[len("bytes="):].split("-")
    size = len(data)
    if not start:
        length = int(end)
        if length == 0 or size == 0:
            return None
        first, last = max(size - length, 0), size - 1
    else:
        first = int(start)
        last = min(int(end), size - 1) if end else size - 1
        if first >= size or last < first:
            return None
    return data[first:last + 1], f"bytes {first}-{last}/{size}"


class FakeCloudinaryClient:
    """Keeps assets in memory and serves them through an httpx mock transport."""

    def __init__(self, api_secret: str = API_SECRET):
        self.assets = {}
        self.uploads = []
        self._api_secret = api_secret
        self.fail_uploads = False

    def _delivery_url(self, public_id: str, resource_type: str) -> str:
        return f"https://res.cloudinary.com/{CLOUD_NAME}/{resource_type}/upload/v1/{public_id}"

    def upload(self, file, **options):
        if self.fail_uploads:
            raise cloudinary.exceptions.Error("Invalid Signature")
        self.uploads.append(options)
        header, payload = file.split(",", 1)
        content_type = re.match(r"data:([^;]+);base64", header).group(1)
        # Cloudinary nests the public id under the folder
        public_id = "/".join(p for p in (options.get("folder"), options["public_id"]) if p)
        url = self._delivery_url(public_id, options["resource_type"])
        self.assets[url] = (base64.b64decode(payload), content_type)
        return {"public_id": public_id, "secure_url": url}

    def destroy(self, public_id, **options):
        url = self._delivery_url(public_id, options.get("resource_type", "image"))
        if self.assets.pop(url, None) is None:
            return {"result": "not found"}
        return {"result": "ok"}

    def url(self, public_id, **options):
        return self._delivery_url(public_id, options.get("resource_type", "image"))

    def private_download_url(self, public_id, format, **options):
        return (
            f"https://api.cloudinary.com/v1_1/{CLOUD_NAME}/{options['resource_type']}/download"
            f"?public_id={public_id}&format={format}&expires_at={options['expires_at']}&signature=x"
        )

    def sign(self, params):
        return cloudinary.utils.api_sign_request(params, self._api_secret)

    def transport(self) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            asset = self.assets.get(str(request.url))
            if asset is None:
                return httpx.Response(404, text="Resource not found")
            data, content_type = asset
            header = request.headers.get("range")
            if header:
                sliced = slice_range(data, header)
                if sliced is None:
                    return httpx.Response(416, headers={"content-range": f"bytes */{len(data)}"})
                chunk, content_range = sliced
                return httpx.Response(
                    206,
                    content=chunk,
                    headers={"content-type": content_type, "content-range": content_range},
                )
            return httpx.Response(200, content=data, headers={"content-type": content_type})

        return httpx.MockTransport(handler)


class FakeS3Client:
    """Just enough of the boto3 S3 client for the store's data path."""

    def __init__(self):
        self.objects = {}
        self.fail_uploads = False

    @staticmethod
    def _error(code: str, status: int, operation: str, headers=None) -> ClientError:
        return ClientError(
            {
                "Error": {"Code": code, "Message": code},
                "ResponseMetadata": {"HTTPStatusCode": status, "HTTPHeaders": headers or {}},
            },
            operation,
        )

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        if self.fail_uploads:
            raise self._error("AccessDenied", 403, "PutObject")
        self.objects[(bucket, key)] = (fileobj.read(), dict(ExtraArgs or {}))

    def get_object(self, Bucket, Key, Range=None):
        if (Bucket, Key) not in self.objects:
            raise self._error("NoSuchKey", 404, "GetObject")
        data, extra = self.objects[(Bucket, Key)]
        response = {"ContentType": extra.get("ContentType", "binary/octet-stream")}
        if Range:
            sliced = slice_range(data, Range)
            if sliced is None:
                raise self._error(
                    "InvalidRange", 416, "GetObject", {"content-range": f"bytes */{len(data)}"}
                )
            data, response["ContentRange"] = sliced
        response["Body"] = io.BytesIO(data)
        response["ContentLength"] = len(data)
        return response

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)
        return {}


@pytest.fixture
def local_store(tmp_path):
    return LocalStore(
        base_path=str(tmp_path / "uploads"),
        base_url="/files/",
        signing_secret="local-secret",
        default_expires=60,
    )


@pytest.fixture
def fake_cloudinary():
    return FakeCloudinaryClient()


@pytest.fixture
def cloudinary_store(fake_cloudinary):
    return CloudinaryStore(
        cloud_name=CLOUD_NAME,
        api_key=API_KEY,
        api_secret=API_SECRET,
        client=fake_cloudinary,
        http=httpx.AsyncClient(transport=fake_cloudinary.transport()),
    )


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def s3_store(fake_s3):
    return S3Store(bucket="assets", region="us-east-1", prefix="tenant-1", client=fake_s3)


@pytest.fixture
def isolated_tempdir(tmp_path, monkeypatch):
    import tempfile

    path = tmp_path / "tmp"
    path.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(path))
    return path
