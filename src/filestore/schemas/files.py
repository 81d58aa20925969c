from typing import Dict, Optional

from pydantic import BaseModel, Field


class PresignedPostRequest(BaseModel):
    """Request body for a direct-upload authorization."""
    key: str = Field(min_length=1)
    content_type: str = "application/octet-stream"
    acl: str = "private"
    max_upload_size: Optional[int] = Field(default=None, gt=0)


class UploadAuthorizationRead(BaseModel):
    """Target URL and form fields for a direct upload."""
    url: str
    fields: Dict[str, str]


class SignedUrlRead(BaseModel):
    url: str


class StoredFileRead(BaseModel):
    key: str
    url: str
