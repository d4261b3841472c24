import asyncio
import logging
import shutil
from pathlib import Path

from clipstack.config import Settings, get_settings
from clipstack.exceptions import UploadError

logger = logging.getLogger(__name__)


class LocalStorageService:
    """Local file storage for development without GCS."""

    def __init__(self, base_path: str | None = None) -> None:
        self.base_path = Path(base_path or get_settings().local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = self.base_path / storage_key
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    def get_public_url(self, storage_key: str) -> str:
        return f"file://{self.base_path / storage_key}"

    async def upload(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Copy a rendered file under the storage root. Returns its location."""
        try:
            full_path = self._get_full_path(storage_key)
            await asyncio.to_thread(shutil.copyfile, local_path, str(full_path))
        except OSError as e:
            raise UploadError(storage_key, str(e)) from e
        logger.info(f"[STORAGE] Stored {storage_key} locally")
        return self.get_public_url(storage_key)


class GCSStorageService:
    """Google Cloud Storage service for production."""

    def __init__(self, bucket_name: str | None = None, project_id: str | None = None) -> None:
        from google.cloud import storage

        settings = get_settings()
        self._storage = storage
        self._bucket_name = bucket_name or settings.gcs_bucket_name
        self._project_id = project_id if project_id is not None else settings.gcs_project_id
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

    @property
    def client(self):
        if self._client is None:
            if self._project_id:
                self._client = self._storage.Client(project=self._project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self._bucket_name)
        return self._bucket

    def get_public_url(self, storage_key: str) -> str:
        return f"gs://{self._bucket_name}/{storage_key}"

    def _upload_sync(self, local_path: str, storage_key: str, content_type: str | None) -> None:
        blob = self.bucket.blob(storage_key)
        if content_type:
            blob.upload_from_filename(local_path, content_type=content_type)
        else:
            blob.upload_from_filename(local_path)

    async def upload(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Upload a local file to GCS. Returns the object location."""
        from google.api_core.exceptions import GoogleAPIError
        from google.auth.exceptions import GoogleAuthError

        try:
            await asyncio.to_thread(self._upload_sync, local_path, storage_key, content_type)
        except (GoogleAPIError, GoogleAuthError, OSError) as e:
            raise UploadError(storage_key, str(e)) from e
        logger.info(f"[STORAGE] Uploaded {storage_key} to gs://{self._bucket_name}")
        return self.get_public_url(storage_key)


StorageService = LocalStorageService | GCSStorageService

_storage_service: StorageService | None = None


def create_storage_service(settings: Settings) -> StorageService:
    # Use LocalStorageService or GCSStorageService based on config
    if settings.use_local_storage:
        return LocalStorageService(settings.local_storage_path)
    return GCSStorageService(settings.gcs_bucket_name, settings.gcs_project_id)


def get_storage_service() -> StorageService:
    global _storage_service
    if _storage_service is None:
        _storage_service = create_storage_service(get_settings())
    return _storage_service
