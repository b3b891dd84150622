from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import boto3
from botocore.config import Config

from foundry.config import settings

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


class MediaStorageConfigurationError(RuntimeError):
    pass


def sanitize_blob_name(filename: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", filename)


class MediaStorage:
    """
    Thin wrapper around S3-compatible storage for site media: presigned uploads,
    prefix listings and server-side uploads of generated images.
    """

    def __init__(self) -> None:
        if not settings.MEDIA_STORAGE_BUCKET:
            raise MediaStorageConfigurationError("MEDIA_STORAGE_BUCKET is required")
        if not settings.MEDIA_STORAGE_ENDPOINT:
            raise MediaStorageConfigurationError("MEDIA_STORAGE_ENDPOINT is required")
        if not settings.MEDIA_STORAGE_ACCESS_KEY or not settings.MEDIA_STORAGE_SECRET_KEY:
            raise MediaStorageConfigurationError(
                "MEDIA_STORAGE_ACCESS_KEY and MEDIA_STORAGE_SECRET_KEY are required"
            )

        addressing_style = "path" if settings.MEDIA_STORAGE_FORCE_PATH_STYLE else "auto"
        self.bucket = settings.MEDIA_STORAGE_BUCKET
        self.endpoint = settings.MEDIA_STORAGE_ENDPOINT.rstrip("/")
        self.prefix = (settings.MEDIA_STORAGE_PREFIX or "").strip("/")
        self.public_base_url = (settings.MEDIA_STORAGE_PUBLIC_BASE_URL or "").rstrip("/")
        self.upload_ttl = int(settings.MEDIA_STORAGE_UPLOAD_TTL_SECONDS or 600)

        session = boto3.session.Session()
        self.client = session.client(
            "s3",
            endpoint_url=settings.MEDIA_STORAGE_ENDPOINT,
            aws_access_key_id=settings.MEDIA_STORAGE_ACCESS_KEY,
            aws_secret_access_key=settings.MEDIA_STORAGE_SECRET_KEY,
            region_name=settings.MEDIA_STORAGE_REGION or "us-east-1",
            use_ssl=bool(settings.MEDIA_STORAGE_USE_SSL),
            config=Config(
                s3={"addressing_style": addressing_style},
                signature_version="s3v4",
            ),
        )

    def build_key(self, name: str) -> str:
        parts = [p for p in [self.prefix, name.lstrip("/")] if p]
        return "/".join(parts)

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"{self.endpoint}/{self.bucket}/{key}"

    def _name_from_key(self, key: str) -> str:
        if self.prefix and key.startswith(f"{self.prefix}/"):
            return key[len(self.prefix) + 1 :]
        return key

    def presign_upload(self, *, filename: str, content_type: Optional[str] = None) -> dict[str, str]:
        """Signed PUT URL for a browser upload, valid for ``upload_ttl`` seconds."""
        name = f"{int(time.time() * 1000)}-{sanitize_blob_name(filename)}"
        key = self.build_key(name)
        expires_on = datetime.now(timezone.utc) + timedelta(seconds=self.upload_ttl)
        upload_url = self.client.generate_presigned_url(
            ClientMethod="put_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ContentType": content_type or DEFAULT_CONTENT_TYPE,
            },
            ExpiresIn=self.upload_ttl,
        )
        logger.info("Issued media upload URL", extra={"key": key})
        return {
            "uploadUrl": upload_url,
            "blobUrl": self.public_url(key),
            "expiresOn": expires_on.isoformat().replace("+00:00", "Z"),
        }

    def list_media(
        self,
        *,
        prefix: Optional[str] = None,
        continuation_token: Optional[str] = None,
        limit: int = 50,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Prefix": self.build_key(prefix or ""),
            "MaxKeys": limit,
        }
        if continuation_token:
            kwargs["ContinuationToken"] = continuation_token
        response = self.client.list_objects_v2(**kwargs)

        items: list[dict[str, Any]] = []
        for obj in response.get("Contents") or []:
            key = obj.get("Key")
            if not key:
                continue
            last_modified = obj.get("LastModified")
            items.append(
                {
                    "name": self._name_from_key(key),
                    "url": self.public_url(key),
                    "size": obj.get("Size"),
                    "lastModified": last_modified.isoformat() if last_modified else None,
                    # list_objects_v2 does not report content types.
                    "contentType": None,
                }
            )
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return {"items": items, "continuationToken": next_token}

    def upload_bytes(
        self,
        *,
        name: str,
        data: bytes,
        content_type: Optional[str],
        cache_control: Optional[str] = IMMUTABLE_CACHE_CONTROL,
    ) -> str:
        """Upload ``data`` under ``name`` and return its public URL."""
        key = self.build_key(name)
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        if cache_control:
            kwargs["CacheControl"] = cache_control
        self.client.put_object(**kwargs)
        logger.info("Uploaded media object", extra={"key": key, "bytes": len(data)})
        return self.public_url(key)
