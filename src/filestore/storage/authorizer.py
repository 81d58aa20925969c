"""
Signed, time-boxed authorizations for direct client uploads.

The private secret never reaches this module: callers hand in a ``sign``
callable that closes over it. Only the public key and the resulting
signature end up in the returned fields.
"""

import hashlib
import hmac
import time
from typing import Any, Callable, Dict, Mapping, Optional

from .base import UploadAuthorization
from .keys import ResourceType, asset_name_of, classify, folder_of, transformation_for

Signer = Callable[[Dict[str, Any]], str]


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def _stringify(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def canonical_query(params: Mapping[str, Any]) -> str:
    """Sorted ``k=v`` pairs joined by ``&``; empty values are left out."""
    return "&".join(
        f"{k}={_stringify(v)}" for k, v in sorted(params.items()) if not _is_empty(v)
    )


def hmac_signature(params: Mapping[str, Any], secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        canonical_query(params).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_hmac_signature(params: Mapping[str, Any], signature: str, secret: str) -> bool:
    expected = hmac_signature(params, secret)
    return hmac.compare_digest(expected, signature or "")


class UploadAuthorizer:
    """Builds the upload parameters for a key and signs them."""

    def __init__(
        self,
        api_key: str,
        sign: Signer,
        target_url: Callable[[ResourceType], str],
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self._sign = sign
        self._target_url = target_url
        self._clock = clock

    def upload_params(self, key: str, content_type: Optional[str]) -> Dict[str, Any]:
        resource_type = classify(content_type)
        params: Dict[str, Any] = {
            "timestamp": int(round(self._clock())),
            "public_id": asset_name_of(key),
            "resource_type": resource_type.value,
            "folder": folder_of(key),
        }
        transformation = transformation_for(resource_type)
        if transformation:
            params["transformation"] = transformation
        return params

    def authorize(self, key: str, content_type: Optional[str] = None) -> UploadAuthorization:
        params = self.upload_params(key, content_type)
        signature = self._sign(dict(params))
        fields = {k: _stringify(v) for k, v in params.items()}
        fields["signature"] = signature
        fields["api_key"] = self.api_key
        return UploadAuthorization(
            url=self._target_url(ResourceType(params["resource_type"])),
            fields=fields,
        )
