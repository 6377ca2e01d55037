"""Blob storage for uploaded contract and invoice documents.

Two backends share the async ``BlobStore`` interface:
- MinioBlobStore: S3-compatible object storage (MinIO SDK) with retry logic,
  bucket auto-creation and presigned download URLs
- LocalBlobStore: plain files under a local directory

Keys are ``{folder}/{uuid4}-{md5}.{ext}``.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import asyncio
import hashlib
import io
import logging
import mimetypes
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings
from services.shared.errors import NotFoundError, StorageFailure

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchObject"}


class StoredBlob(BaseModel):
    """Location of a stored document.

    Attributes:
        key: Opaque storage key recorded on the document
        url: Download URL (presigned for MinIO, file URI for local storage)
    """

    key: str
    url: str


class BlobStore(Protocol):
    """Protocol for document blob stores."""

    async def put(self, data: bytes, original_name: str, mime_type: str, folder: str) -> StoredBlob:
        ...

    async def get(self, key: str) -> bytes:
        """Raises NotFoundError if ``key`` is not stored."""
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def delete(self, key: str) -> None:
        ...


def build_key(data: bytes, original_name: str, folder: str) -> str:
    """Build a unique, content-fingerprinted storage key."""
    digest = hashlib.md5(data).hexdigest()
    extension = original_name.rsplit(".", 1)[-1] if "." in original_name else "bin"
    return f"{folder}/{uuid4()}-{digest}.{extension.lower()}"


def detect_content_type(filename: str) -> str:
    """Detect content type from filename."""
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, S3Error) and error.code not in _NOT_FOUND_CODES


_s3_retry = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential_jitter(initial=1, max=10),
    reraise=True,
)


class MinioBlobStore:
    """S3-compatible object storage.

    Provides document storage with data sovereignty support
    through on-premises MinIO deployment. SDK calls are blocking and run in
    a worker thread.
    """

    def __init__(self, settings: Settings, url_expiry: timedelta = timedelta(hours=1)) -> None:
        """Initialize MinIO blob store.

        Args:
            settings: Application settings with storage configuration
            url_expiry: Lifetime of presigned download URLs
        """
        self.settings = settings
        self.bucket = settings.storage_bucket
        self.url_expiry = url_expiry
        self._client: Minio | None = None
        self._bucket_ready = False

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise ValueError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage credentials are set."""
        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        client = self._get_client()
        if not client.bucket_exists(self.bucket):
            client.make_bucket(self.bucket)
            logger.info(f"Created bucket: {self.bucket}")
        self._bucket_ready = True

    @_s3_retry
    def _put_sync(self, key: str, data: bytes, mime_type: str, original_name: str) -> str:
        client = self._get_client()
        self._ensure_bucket()
        client.put_object(
            bucket_name=self.bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=mime_type or detect_content_type(original_name),
            metadata={
                "original-name": original_name,
                "upload-date": datetime.now(UTC).isoformat(),
            },
        )
        url: str = client.presigned_get_object(
            bucket_name=self.bucket, object_name=key, expires=self.url_expiry
        )
        return url

    @_s3_retry
    def _get_sync(self, key: str) -> bytes:
        response = self._get_client().get_object(bucket_name=self.bucket, object_name=key)
        try:
            data: bytes = response.read()
            return data
        finally:
            response.close()
            response.release_conn()

    def _exists_sync(self, key: str) -> bool:
        try:
            self._get_client().stat_object(bucket_name=self.bucket, object_name=key)
            return True
        except S3Error:
            return False

    @_s3_retry
    def _delete_sync(self, key: str) -> None:
        self._get_client().remove_object(bucket_name=self.bucket, object_name=key)

    async def put(self, data: bytes, original_name: str, mime_type: str, folder: str) -> StoredBlob:
        key = build_key(data, original_name, folder)
        try:
            url = await asyncio.to_thread(self._put_sync, key, data, mime_type, original_name)
        except S3Error as e:
            logger.error(f"S3 error uploading {key}: {e}")
            raise StorageFailure(f"File upload failed: {e.code} - {e.message}") from e
        logger.info(f"Uploaded {key} to {self.bucket} ({len(data)} bytes)")
        return StoredBlob(key=key, url=url)

    async def get(self, key: str) -> bytes:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except S3Error as e:
            if e.code in _NOT_FOUND_CODES:
                raise NotFoundError(f"Stored file not found: {key}") from e
            logger.error(f"S3 error reading {key}: {e}")
            raise StorageFailure(f"File retrieval failed: {e.code} - {e.message}") from e

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._exists_sync, key)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._delete_sync, key)
        except S3Error as e:
            logger.error(f"S3 error deleting {key}: {e}")
            raise StorageFailure(f"File deletion failed: {e.code} - {e.message}") from e
        logger.info(f"Deleted {key} from {self.bucket}")


class LocalBlobStore:
    """Blob store backed by a local directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise NotFoundError(f"Invalid storage key: {key}")
        return path

    async def put(self, data: bytes, original_name: str, mime_type: str, folder: str) -> StoredBlob:
        key = build_key(data, original_name, folder)
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        logger.info(f"Stored {key} locally ({len(data)} bytes, {mime_type})")
        return StoredBlob(key=key, url=path.as_uri())

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFoundError(f"Stored file not found: {key}")
        return await asyncio.to_thread(path.read_bytes)

    async def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    async def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def create_blob_store(settings: Settings) -> BlobStore:
    """Create the blob store named by settings.storage_backend.

    Raises:
        ValueError: If configured backend is unknown
    """
    if settings.storage_backend == "minio":
        store = MinioBlobStore(settings)
        if not store.is_available():
            logger.warning("MinIO credentials not configured; uploads will fail")
        return store
    if settings.storage_backend == "local":
        return LocalBlobStore(settings.storage_local_path)
    raise ValueError(f"Unknown storage backend: '{settings.storage_backend}'. Available: local, minio")
