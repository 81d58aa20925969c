# filestore/storage/base.py
import asyncio
import io
import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    BinaryIO,
    Callable,
    Dict,
    Iterable,
    Optional,
    Tuple,
    Union,
)

from .errors import RetrievalFailure

logger = logging.getLogger("filestore.storage")

CHUNK_SIZE = 64 * 1024

Body = Union[bytes, bytearray, memoryview, str, BinaryIO, AsyncIterable[bytes], Iterable[bytes]]


@dataclass(frozen=True)
class ByteRange:
    """
    Inclusive byte range; a missing bound leaves that side open.

    ``suffix_length`` selects the last N bytes (``bytes=-N``) and excludes
    ``start``/``end``.
    """

    start: Optional[int] = None
    end: Optional[int] = None
    suffix_length: Optional[int] = None

    @classmethod
    def suffix(cls, length: int) -> "ByteRange":
        return cls(suffix_length=length)

    @property
    def is_full(self) -> bool:
        return self.start is None and self.end is None and self.suffix_length is None

    def header(self) -> Optional[str]:
        """Value for an HTTP ``Range`` header, or ``None`` for the whole object."""
        if self.is_full:
            return None
        if self.suffix_length is not None:
            return f"bytes=-{self.suffix_length}"
        start = self.start or 0
        end = "" if self.end is None else str(self.end)
        return f"bytes={start}-{end}"

    def resolve(self, size: int) -> Optional[Tuple[int, int]]:
        """Concrete ``(first, last)`` offsets for an object of *size* bytes, or ``None`` if unsatisfiable."""
        if self.suffix_length is not None:
            if self.suffix_length <= 0 or size == 0:
                return None
            return max(size - self.suffix_length, 0), size - 1
        first = self.start or 0
        if first >= size:
            return None
        last = size - 1 if self.end is None else min(self.end, size - 1)
        if last < first:
            return None
        return first, last


def content_range(first: int, last: int, total: Optional[int]) -> str:
    return f"bytes {first}-{last}/{'*' if total is None else total}"


@dataclass(frozen=True)
class UploadAuthorization:
    """Target URL plus the form fields a client posts alongside the file."""

    url: str
    fields: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "fields": dict(self.fields)}


class FileStream:
    """
    Async byte stream returned by ``get_file_stream``.

    Callers must either exhaust it or call ``aclose()``; the underlying
    connection or file handle is held open until one of those happens.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        close: Optional[Callable[[], Awaitable[None]]] = None,
        content_type: Optional[str] = None,
        content_length: Optional[int] = None,
        content_range: Optional[str] = None,
    ):
        self._chunks = chunks
        self._close = close
        self._closed = False
        self.content_type = content_type
        self.content_length = content_length
        # Set only when the body is a partial response, e.g. "bytes 0-99/1000"
        self.content_range = content_range

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._chunks:
                if chunk:
                    yield chunk
        finally:
            await self.aclose()

    async def read(self) -> bytes:
        """Drain the whole stream into memory."""
        buf = io.BytesIO()
        async for chunk in self:
            buf.write(chunk)
        return buf.getvalue()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._close is not None:
            await self._close()

    async def __aenter__(self) -> "FileStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


@dataclass
class FileHandle:
    """A remote object materialised into a temporary local file."""

    path: Path
    _tmp_dir: Path

    async def cleanup(self) -> None:
        # Safe to call more than once
        await asyncio.to_thread(shutil.rmtree, self._tmp_dir, True)

    async def __aenter__(self) -> "FileHandle":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.cleanup()


async def drain_body(body: Body) -> bytes:
    """Read any supported payload fully into memory."""
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if hasattr(body, "read"):
        return await asyncio.to_thread(body.read)
    buf = io.BytesIO()
    if hasattr(body, "__aiter__"):
        async for chunk in body:
            buf.write(chunk)
    else:
        for chunk in body:
            buf.write(chunk)
    return buf.getvalue()


class BaseStore(ABC):
    """
    Contract every storage back-end must fulfil.

    Network-facing operations are coroutines. Back-ends wrapping blocking
    SDKs push those calls onto a worker thread so the event loop never
    stalls. Constructors only record configuration; they never talk to
    the network.
    """

    name: str = "base"

    @classmethod
    def is_available(cls) -> bool:
        """Whether the SDK this back-end depends on can be imported."""
        return True

    @abstractmethod
    async def store(
        self,
        body: Body,
        key: str,
        content_type: Optional[str] = None,
        acl: Optional[str] = None,
    ) -> str:
        """Save *body* under *key* and return a URL for it."""
        ...

    @abstractmethod
    async def get_file_stream(
        self, key: str, range: Optional[ByteRange] = None
    ) -> Optional[FileStream]:
        """
        Open the object as a stream, or ``None`` if it is unavailable.

        Raises ``RangeNotSatisfiable`` when *range* lies outside the object.
        """
        ...

    @abstractmethod
    async def delete_file(self, key: str) -> None:
        """Remove the object. Deleting a missing object succeeds."""
        ...

    @abstractmethod
    def get_url_for_key(self, key: str) -> str:
        """Direct URL for the object; no network I/O."""
        ...

    @abstractmethod
    async def get_signed_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """Time-limited signed URL for the object."""
        ...

    @abstractmethod
    async def get_presigned_post(
        self,
        key: str,
        acl: str,
        max_upload_size: int,
        content_type: str,
    ) -> UploadAuthorization:
        """Signed authorization a client can use to upload *key* directly."""
        ...

    @abstractmethod
    def get_upload_url(self, server_side: bool = False) -> str:
        """Base endpoint for direct uploads."""
        ...

    async def get_file_handle(self, key: str) -> FileHandle:
        """
        Download the object to a temporary file.

        The caller owns the returned handle and must call ``cleanup()``
        (or use it as an async context manager). Raises ``RetrievalFailure``
        if the object cannot be streamed; no temporary file is left behind
        on any failure.
        """
        stream = await self.get_file_stream(key)
        if stream is None:
            raise RetrievalFailure("No stream available", key=key)

        handle: Optional[FileHandle] = None
        try:
            tmp_dir = Path(tempfile.mkdtemp(prefix="filestore-"))
            handle = FileHandle(path=tmp_dir / "tmp", _tmp_dir=tmp_dir)
            with open(handle.path, "wb") as out:
                async for chunk in stream:
                    out.write(chunk)
        except BaseException as e:
            await stream.aclose()
            if handle is not None:
                await handle.cleanup()
            logger.error(
                f"Failed to materialise {key} to a local file: {e}",
                extra={"key": key, "operation": "get_file_handle"},
            )
            raise
        return handle

    async def aclose(self) -> None:
        """Release pooled connections held by the back-end."""
        return None
