"""Cloud Storage client wrapper for uploaded files."""

import uuid
from pathlib import Path

from google.cloud import storage

from sitekb.config import get_settings


def _blob_path(storage_path: str) -> str:
    """Strip the gs://bucket/ prefix from a storage path."""
    if storage_path.startswith("gs://"):
        parts = storage_path.replace("gs://", "").split("/", 1)
        return parts[1] if len(parts) > 1 else ""
    return storage_path


class StorageClient:
    """Wrapper for Cloud Storage operations."""

    _instance: "StorageClient | None" = None
    _client: storage.Client | None = None
    _bucket: storage.Bucket | None = None

    def __new__(cls) -> "StorageClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def client(self) -> storage.Client:
        """Get or create Storage client."""
        if self._client is None:
            self._client = storage.Client()
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        """Get or create bucket reference."""
        if self._bucket is None:
            settings = get_settings()
            self._bucket = self.client.bucket(settings.gcs_bucket_name)
        return self._bucket

    async def upload_file(
        self,
        file_content: bytes,
        filename: str,
        content_type: str,
        tenant_id: str,
        folder: str = "documents",
    ) -> str:
        """
        Upload file to Cloud Storage.

        Returns:
            Storage path (gs://bucket/path)
        """
        file_ext = Path(filename).suffix
        unique_name = f"{uuid.uuid4()}{file_ext}"
        blob_path = f"{folder}/{tenant_id}/{unique_name}"

        blob = self.bucket.blob(blob_path)
        blob.upload_from_string(file_content, content_type=content_type)

        settings = get_settings()
        return f"gs://{settings.gcs_bucket_name}/{blob_path}"

    async def download_file(self, storage_path: str) -> bytes:
        """Download file content from a gs:// path or blob path."""
        blob = self.bucket.blob(_blob_path(storage_path))
        return blob.download_as_bytes()

    async def delete_file(self, storage_path: str) -> None:
        """Delete file from Cloud Storage."""
        blob = self.bucket.blob(_blob_path(storage_path))
        blob.delete()


def get_storage_client() -> StorageClient:
    """Get Storage client instance (dependency injection)."""
    return StorageClient()
