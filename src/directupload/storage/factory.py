"""Storage gateway selection."""

from functools import lru_cache

from directupload.core.config import settings
from directupload.storage.base import StorageGateway


@lru_cache(maxsize=1)
def get_storage_gateway() -> StorageGateway:
    """Return the gateway for the configured STORAGE_BACKEND.

    Raises:
        ValueError: If the backend is unknown or missing required settings
    """
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "local":
        from directupload.storage.local import LocalStorageGateway

        return LocalStorageGateway(
            base_path=settings.LOCAL_STORAGE_PATH,
            base_url=settings.LOCAL_STORAGE_BASE_URL,
            signing_key=settings.LOCAL_STORAGE_SIGNING_KEY,
        )

    if backend == "gcs":
        from directupload.storage.gcs import GCSStorageGateway

        return GCSStorageGateway(
            bucket_name=settings.GCS_BUCKET_NAME,
            project_id=settings.GCP_PROJECT_ID or None,
            sign_with_iam=settings.GCS_SIGN_WITH_IAM,
        )

    if backend == "s3":
        from directupload.storage.s3 import S3StorageGateway

        return S3StorageGateway(
            bucket_name=settings.S3_BUCKET,
            region_name=settings.AWS_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL or None,
        )

    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
