"""Object storage for input uploads and gallery exports (S3-compatible, R2 in production)."""

import asyncio
from datetime import datetime
from typing import Any, Optional, Protocol
from uuid import UUID

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from vitrine.core.config import Settings
from vitrine.services.exceptions import StorageError

logger = structlog.get_logger(__name__)

PIPELINE_VERSION = 1


def upload_key(account_id: UUID, job_id: UUID, now: datetime) -> str:
    """Raw input photo key: uploads/{YYYY}/{MM}/{account}/{job}.jpg"""
    return f"uploads/{now:%Y}/{now:%m}/{account_id}/{job_id}.jpg"


def export_key(account_id: UUID, job_id: UUID, format_tag: str, version: int = PIPELINE_VERSION) -> str:
    """Gallery export key: gallery/{account}/{job}/v{version}/{format}.webp"""
    return f"gallery/{account_id}/{job_id}/v{version}/{format_tag}.webp"


def thumbnail_key(account_id: UUID, job_id: UUID, size: int, version: int = PIPELINE_VERSION) -> str:
    return f"gallery/{account_id}/{job_id}/v{version}/thumb_{size}.webp"


class BlobStore(Protocol):
    """Storage contract used by admission and the pipeline."""

    raw_bucket: str
    gallery_bucket: str

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None: ...

    async def get(self, bucket: str, key: str) -> bytes: ...

    def public_url(self, bucket: str, key: str) -> str: ...


class ObjectStorage:
    """boto3-backed storage. SDK calls run in worker threads so the event loop never blocks."""

    def __init__(
        self,
        client: Any,
        raw_bucket: str,
        gallery_bucket: str,
        public_base_url: str = "",
    ):
        """Initialize storage.

        Args:
            client: boto3 S3 client (or a compatible stub in tests)
            raw_bucket: Private bucket for input photos
            gallery_bucket: Public bucket for exports and thumbnails
            public_base_url: CDN base URL serving the gallery bucket
        """
        self.client = client
        self.raw_bucket = raw_bucket
        self.gallery_bucket = gallery_bucket
        self.public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        client = boto3.client(
            "s3",
            endpoint_url=settings.r2_endpoint or None,
            aws_access_key_id=settings.r2_access_key_id or None,
            aws_secret_access_key=settings.r2_secret_access_key or None,
            region_name="auto",
            config=Config(signature_version="s3v4", retries={"max_attempts": 2}),
        )
        return cls(
            client,
            raw_bucket=settings.r2_raw_bucket,
            gallery_bucket=settings.r2_gallery_bucket,
            public_base_url=settings.r2_public_base_url,
        )

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """Upload bytes.

        Raises:
            StorageError: On any S3 client or transport failure
        """
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=31536000",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Upload of {bucket}/{key} failed: {e}") from e

        logger.debug("storage.put", bucket=bucket, key=key, size_bytes=len(data))

    async def get(self, bucket: str, key: str) -> bytes:
        """Download bytes.

        Raises:
            StorageError: On any S3 client or transport failure (including missing keys)
        """

        def _read() -> bytes:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_read)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Download of {bucket}/{key} failed: {e}") from e

    def public_url(self, bucket: str, key: str, expires_in: Optional[int] = None) -> str:
        """CDN URL for gallery objects, a presigned URL when no CDN is configured."""
        if self.public_base_url and bucket == self.gallery_bucket:
            return f"{self.public_base_url}/{key}"
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_in or 3600,
        )
