"""Evidence store adapter backed by MinIO / S3-compatible object storage."""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from io import BytesIO
from typing import Protocol
from urllib.parse import urlsplit

from minio import Minio

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


class EvidenceStoreError(Exception):
    """Raised when evidence cannot be written to or read from the store."""


class EvidenceStore(Protocol):
    async def upload(self, data: bytes, suggested_name: str, mime_type: str) -> str:
        ...

    async def download(self, reference: str) -> bytes:
        ...


class MinioEvidenceStore:
    """Thin async wrapper around the MinIO SDK using thread executors."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.bucket = settings.minio_bucket
        self.endpoint = settings.minio_endpoint
        scheme = "https" if settings.minio_secure else "http"
        self.base_url = (settings.minio_public_url or f"{scheme}://{settings.minio_endpoint}").rstrip("/")
        self._client = Minio(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )

    async def ensure_bucket(self) -> None:
        exists = await asyncio.to_thread(self._client.bucket_exists, bucket_name=self.bucket)
        if not exists:
            await asyncio.to_thread(self._client.make_bucket, bucket_name=self.bucket)

    def reference_for(self, object_name: str) -> str:
        return f"{self.base_url}/{self.bucket}/{object_name}"

    def object_name_for(self, reference: str) -> str:
        path = urlsplit(reference).path.lstrip("/")
        prefix = f"{self.bucket}/"
        if not path.startswith(prefix):
            raise EvidenceStoreError(f"Reference {reference!r} is outside bucket {self.bucket!r}")
        return path[len(prefix):]

    async def upload(self, data: bytes, suggested_name: str, mime_type: str) -> str:
        logger.info("evidence.upload.start object=%s size=%s", suggested_name, len(data))
        try:
            await self.ensure_bucket()
            await asyncio.to_thread(
                self._client.put_object,
                bucket_name=self.bucket,
                object_name=suggested_name,
                data=BytesIO(data),
                length=len(data),
                content_type=mime_type,
            )
        except Exception as exc:
            raise EvidenceStoreError(f"Failed to upload {suggested_name} to {self.endpoint}: {exc}") from exc
        logger.info("evidence.upload.completed object=%s", suggested_name)
        return self.reference_for(suggested_name)

    async def download(self, reference: str) -> bytes:
        object_name = self.object_name_for(reference)
        try:
            response = await asyncio.to_thread(
                self._client.get_object,
                bucket_name=self.bucket,
                object_name=object_name,
            )
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()
        except Exception as exc:
            raise EvidenceStoreError(f"Failed to download {object_name} from {self.endpoint}: {exc}") from exc


@lru_cache
def get_evidence_store() -> MinioEvidenceStore:
    return MinioEvidenceStore()
