"""
Storage service for the local filesystem or S3-compatible backends (e.g., SeaweedFS, MinIO).

Callers only deal with storage keys such as ``<owner>/<kb>/<name>``; the
backend decides where the bytes actually live.
"""

from __future__ import annotations

import asyncio
import io
import os
from typing import Optional

import aiofiles
import boto3
import structlog
from botocore.exceptions import ClientError

from voxe_kb.core.config import settings

logger = structlog.get_logger(__name__)


class StorageService:
    """Abstraction over local and S3-compatible object storage."""

    def __init__(self, backend: Optional[str] = None, root_dir: Optional[str] = None) -> None:
        self.backend = (backend or settings.STORAGE_BACKEND or "local").strip().lower()
        self.root_dir = os.path.abspath(root_dir or settings.UPLOAD_DIR)
        self._client = None
        self.bucket = settings.S3_BUCKET_NAME or None

    def is_object_storage(self) -> bool:
        return self.backend in {"s3", "seaweedfs", "minio"}

    def _local_path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root_dir, key))
        # keys come from sanitized names, still refuse anything escaping the root
        if os.path.commonpath([path, self.root_dir]) != self.root_dir:
            raise ValueError(f"storage key escapes upload dir: {key}")
        return path

    def _resolve_secure(self) -> bool:
        if settings.S3_SECURE is not None:
            return bool(settings.S3_SECURE)
        return (settings.S3_ENDPOINT or "").startswith("https://")

    def _get_client(self):
        if self._client is not None:
            return self._client
        endpoint = settings.S3_ENDPOINT
        if not endpoint:
            raise RuntimeError("S3 endpoint not configured")
        if not settings.S3_ACCESS_KEY or not settings.S3_SECRET_KEY:
            raise RuntimeError("S3 credentials not configured")
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            region_name=settings.S3_REGION,
            use_ssl=self._resolve_secure(),
        )
        return self._client

    def _ensure_bucket(self) -> None:
        if not self.bucket:
            raise RuntimeError("S3 bucket not configured")
        client = self._get_client()
        try:
            client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in {"404", "NoSuchBucket", "NotFound"}:
                raise
            try:
                client.create_bucket(Bucket=self.bucket)
            except ClientError as e2:
                code2 = str(e2.response.get("Error", {}).get("Code", ""))
                if code2 not in {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}:
                    raise

    def _put_object(self, payload: bytes, key: str, content_type: Optional[str]) -> None:
        self._ensure_bucket()
        client = self._get_client()
        data = io.BytesIO(payload)
        if content_type:
            client.upload_fileobj(data, self.bucket, key, ExtraArgs={"ContentType": content_type})
        else:
            client.upload_fileobj(data, self.bucket, key)

    async def save_bytes(
        self,
        payload: bytes,
        key: str,
        content_type: Optional[str] = None,
    ) -> str:
        """Persist ``payload`` under ``key`` and return the key."""
        if self.is_object_storage():
            await asyncio.to_thread(self._put_object, payload, key, content_type)
        else:
            path = self._local_path(key)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(payload)
        logger.info("Stored file", key=key, size=len(payload), backend=self.backend)
        return key

    def read_bytes(self, key: str) -> bytes:
        """Read content from storage."""
        if not key:
            raise FileNotFoundError("storage key is empty")
        if not self.is_object_storage():
            with open(self._local_path(key), "rb") as f:
                return f.read()
        self._ensure_bucket()
        client = self._get_client()
        obj = client.get_object(Bucket=self.bucket, Key=key)
        body = obj["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def delete(self, key: str) -> None:
        """Delete a file/object from storage. Missing files are not an error."""
        if not key:
            return
        if not self.is_object_storage():
            path = self._local_path(key)
            if os.path.exists(path):
                os.remove(path)
            return
        self._ensure_bucket()
        self._get_client().delete_object(Bucket=self.bucket, Key=key)

    def delete_quietly(self, key: str) -> bool:
        """Best-effort delete used after the database side is already committed."""
        try:
            self.delete(key)
            return True
        except (OSError, ValueError, RuntimeError, ClientError) as e:
            logger.warning("Failed to delete stored file", key=key, error=str(e))
            return False

    def exists(self, key: str) -> bool:
        if not key:
            return False
        if not self.is_object_storage():
            return os.path.exists(self._local_path(key))
        self._ensure_bucket()
        try:
            self._get_client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False


storage_service = StorageService()
