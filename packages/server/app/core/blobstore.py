"""
Blob storage for uploaded documents (S3-compatible, via boto3).

Clients never stream bytes through this service: uploads and downloads go
straight to the bucket with short-lived presigned URLs. The service only
presigns and deletes. Objects are written once and deleted, never mutated.
"""

from __future__ import annotations

import asyncio
import re
from functools import lru_cache
from urllib.parse import quote

import boto3
import structlog
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import get_settings
from app.core.errors import UpstreamUnavailable

log = structlog.get_logger()

# Treated as "already gone" by delete().
_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}

_UNSAFE_HEADER_CHARS = re.compile(r"[^A-Za-z0-9._ -]+")


def content_disposition(file_name: str) -> str:
    """RFC 6266 attachment header: ASCII fallback plus the UTF-8 ``filename*``."""
    fallback = _UNSAFE_HEADER_CHARS.sub("_", file_name).strip() or "file"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name, safe='')}"


class S3BlobStore:
    """Presign and delete objects in a single bucket."""

    def __init__(self, bucket: str, client=None):
        self.bucket = bucket
        self.client = client or boto3.client("s3", config=Config(signature_version="s3v4"))

    def presign_put(self, key: str, content_type: str, expires_in: int) -> str:
        """URL for a single PUT of ``key``; the upload must send the same Content-Type."""
        return self.client.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=expires_in,
        )

    def presign_get(self, key: str, expires_in: int, file_name: str | None = None) -> str:
        params = {"Bucket": self.bucket, "Key": key}
        if file_name:
            params["ResponseContentDisposition"] = content_disposition(file_name)
        return self.client.generate_presigned_url(
            "get_object",
            Params=params,
            ExpiresIn=expires_in,
        )

    async def delete(self, key: str) -> None:
        """Delete ``key``. Deleting an absent object succeeds."""
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _MISSING_CODES:
                log.debug("blobstore.delete_missing", key=key)
                return
            raise UpstreamUnavailable(f"Blob store rejected delete: {code}", key=key) from exc
        except BotoCoreError as exc:
            raise UpstreamUnavailable("Blob store unreachable", key=key) from exc


@lru_cache
def get_blob_store() -> S3BlobStore:
    """FastAPI dependency / worker accessor for the configured bucket."""
    settings = get_settings()
    client = boto3.client(
        "s3",
        region_name=settings.s3_region,
        endpoint_url=settings.s3_endpoint_url,
        config=Config(signature_version="s3v4"),
    )
    return S3BlobStore(settings.s3_bucket, client=client)
