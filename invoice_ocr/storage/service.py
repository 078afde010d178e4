"""S3-compatible file storage access using MinIO.

The pipeline never reads objects through the SDK directly. It asks for a
time-bounded presigned GET URL and downloads the document over HTTP, the
same way any other consumer of a stored invoice would.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import logging
from datetime import timedelta

import httpx
from minio import Minio
from minio.error import S3Error
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_ocr.shared.config import Settings
from invoice_ocr.shared.errors import StorageError

logger = logging.getLogger(__name__)


class StorageService:
    """Access to uploaded invoice files in object storage."""

    def __init__(self, settings: Settings, http_client: httpx.Client | None = None) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
            http_client: HTTP client used for downloads (created if omitted)
        """
        self.settings = settings
        self._client: Minio | None = None
        self._http = http_client or httpx.Client(timeout=settings.download_timeout_seconds)

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Raises:
            StorageError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key or not self.settings.storage_secret_key:
                raise StorageError(
                    "Storage credentials not configured. "
                    "Set APP_STORAGE_ACCESS_KEY and APP_STORAGE_SECRET_KEY."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def health_check(self) -> bool:
        """Check if storage backend is reachable.

        Returns:
            True if the invoice bucket exists
        """
        try:
            return self._get_client().bucket_exists(self.settings.storage_bucket)
        except (StorageError, S3Error, OSError) as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _presign(self, object_name: str, expires_seconds: int) -> str:
        return self._get_client().presigned_get_object(
            bucket_name=self.settings.storage_bucket,
            object_name=object_name,
            expires=timedelta(seconds=expires_seconds),
        )

    def get_presigned_url(self, object_name: str, expires_seconds: int | None = None) -> str:
        """Generate a time-bounded download URL for a stored file.

        Args:
            object_name: Object name in the invoice bucket
            expires_seconds: URL lifetime (defaults to settings.signed_url_expiry_seconds)

        Returns:
            Presigned GET URL

        Raises:
            StorageError: If the URL cannot be generated
        """
        expires_seconds = expires_seconds or self.settings.signed_url_expiry_seconds
        try:
            return self._presign(object_name, expires_seconds)
        except S3Error as e:
            logger.error(f"S3 error generating presigned URL for {object_name}: {e}")
            raise StorageError(f"Failed to get signed URL: {e.code} - {e.message}") from e

    def download(self, url: str) -> bytes:
        """Download a document through its presigned URL.

        Raises:
            StorageError: On transport failure or a non-2xx response
        """
        try:
            response = self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to download document: {e}")
            raise StorageError(f"Failed to download document: {e}") from e

        logger.debug(f"Downloaded {len(response.content)} bytes")
        return response.content

    def close(self) -> None:
        self._http.close()
