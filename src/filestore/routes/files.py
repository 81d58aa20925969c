import logging
import re
from typing import Annotated, Optional

from fastapi import Depends, File, Form, Header, HTTPException, Query, Response, UploadFile
from fastapi.responses import StreamingResponse
from fastapi.routing import APIRouter

from filestore.configs.config import get_config
from filestore.schemas.files import (
    PresignedPostRequest,
    SignedUrlRead,
    StoredFileRead,
    UploadAuthorizationRead,
)
from filestore.storage import (
    BaseStore,
    ByteRange,
    ConfigurationError,
    DeleteError,
    LocalStore,
    RangeNotSatisfiable,
    UploadError,
    get_store,
)

logger = logging.getLogger("filestore.files")
router = APIRouter(
    prefix="/files",
    tags=["files"],
    responses={404: {"description": "Not found"}},
)

RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")

StoreDep = Annotated[BaseStore, Depends(get_store)]


def parse_range(header: Optional[str]) -> Optional[ByteRange]:
    """
    Parse a single ``bytes=start-end`` or ``bytes=-suffix`` range.

    Anything malformed means the whole file.
    """
    if not header:
        return None
    match = RANGE_PATTERN.match(header.strip())
    if not match:
        return None
    start, end = match.groups()
    if not start:
        # "bytes=-N" asks for the last N bytes
        return ByteRange.suffix(int(end)) if end else None
    byte_range = ByteRange(start=int(start), end=int(end) if end else None)
    if byte_range.end is not None and byte_range.end < byte_range.start:
        return None
    return byte_range


@router.post("/presigned-post", response_model=UploadAuthorizationRead)
async def create_presigned_post(body: PresignedPostRequest, store: StoreDep):
    """
    Issue a signed authorization so the client can upload straight to the backend.
    """
    max_upload_size = body.max_upload_size or get_config().max_upload_bytes
    try:
        authorization = await store.get_presigned_post(
            body.key, body.acl, max_upload_size, body.content_type
        )
    except ConfigurationError as e:
        logger.error(f"Cannot issue upload authorization: {e}")
        raise HTTPException(status_code=500, detail="Storage backend is misconfigured")
    return authorization.to_dict()


@router.get("/signed-url/{key:path}", response_model=SignedUrlRead)
async def create_signed_url(
    key: str,
    store: StoreDep,
    expires_in: Annotated[Optional[int], Query(gt=0)] = None,
):
    try:
        url = await store.get_signed_url(key, expires_in)
    except ConfigurationError as e:
        logger.error(f"Cannot sign URL: {e}")
        raise HTTPException(status_code=500, detail="Storage backend is misconfigured")
    return {"url": url}


@router.post("/upload", response_model=StoredFileRead, status_code=201)
async def upload_file(
    store: StoreDep,
    file: Annotated[UploadFile, File(description="The file to upload")],
    key: Annotated[str, Form()],
    acl: Annotated[str, Form()] = "",
    content_type: Annotated[str, Form()] = "",
    max_upload_size: Annotated[str, Form()] = "",
    timestamp: Annotated[str, Form()] = "",
    signature: Annotated[str, Form()] = "",
):
    """
    Accept a direct upload authorized by ``/files/presigned-post``.

    Only the local backend receives uploads through the application; other
    backends accept them at their own endpoints.
    """
    if not isinstance(store, LocalStore):
        raise HTTPException(status_code=404, detail="Direct uploads go to the storage backend")

    fields = {
        "key": key,
        "acl": acl,
        "content_type": content_type,
        "max_upload_size": max_upload_size,
        "timestamp": timestamp,
        "signature": signature,
    }
    try:
        authorized = store.verify_upload(fields)
    except ConfigurationError as e:
        logger.error(f"Cannot verify upload authorization: {e}")
        raise HTTPException(status_code=500, detail="Storage backend is misconfigured")
    if not authorized:
        logger.warning(f"Rejected upload with invalid authorization for {key}")
        raise HTTPException(status_code=403, detail="Invalid or expired upload authorization")

    if file.size is not None and max_upload_size and file.size > int(max_upload_size):
        raise HTTPException(status_code=413, detail="File exceeds the authorized size")

    try:
        url = await store.store(file.file, key, content_type or file.content_type, acl or None)
    except UploadError as e:
        raise HTTPException(status_code=502, detail=f"File upload failed: {e.message}")

    logger.info(f"Stored direct upload {key}")
    return {"key": key, "url": url}


async def _authorize_local_read(
    store: LocalStore, key: str, expires: Optional[int], signature: Optional[str]
) -> None:
    # Objects not stored as public-read need a valid signed URL
    if signature is None and await store.is_public(key):
        return
    try:
        valid = (
            expires is not None
            and signature is not None
            and store.verify_signed_url(key, expires, signature)
        )
    except ConfigurationError as e:
        logger.error(f"Cannot verify signed URL: {e}")
        raise HTTPException(status_code=500, detail="Storage backend is misconfigured")
    if not valid:
        logger.warning(f"Rejected unsigned or expired read of {key}")
        raise HTTPException(status_code=403, detail="Invalid or expired signature")


@router.get("/{key:path}")
async def download_file(
    key: str,
    store: StoreDep,
    range_header: Annotated[Optional[str], Header(alias="range")] = None,
    expires: Annotated[Optional[int], Query()] = None,
    signature: Annotated[Optional[str], Query()] = None,
):
    """Stream a stored object, honouring a single byte range."""
    if isinstance(store, LocalStore):
        await _authorize_local_read(store, key, expires, signature)

    byte_range = parse_range(range_header)
    try:
        stream = await store.get_file_stream(key, byte_range)
    except RangeNotSatisfiable as e:
        total = "*" if e.total_size is None else str(e.total_size)
        raise HTTPException(
            status_code=416,
            detail="Requested range not satisfiable",
            headers={"Content-Range": f"bytes */{total}"},
        )
    if stream is None:
        raise HTTPException(status_code=404, detail="File not found")

    headers = {}
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    if stream.content_range:
        headers["Content-Range"] = stream.content_range
    return StreamingResponse(
        stream,
        status_code=206 if stream.content_range else 200,
        media_type=stream.content_type or "application/octet-stream",
        headers=headers,
    )


@router.delete("/{key:path}", status_code=204)
async def delete_file(key: str, store: StoreDep):
    try:
        await store.delete_file(key)
    except DeleteError as e:
        raise HTTPException(status_code=502, detail=f"File deletion failed: {e.message}")
    logger.info(f"Deleted {key}")
    return Response(status_code=204)
