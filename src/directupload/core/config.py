"""Configuration management for the direct upload service."""

import math
from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict

MB = 1024 * 1024


@dataclass(frozen=True)
class UploadConfig:
    """Upload tuning shared by the coordinator and the client orchestrator.

    Attributes:
        single_put_threshold: Declared sizes up to and including this many
            bytes are uploaded with one signed PUT
        part_size: Size in bytes of every multipart part except the last
        max_concurrent_parts: Upper bound on part PUTs in flight at once
        url_ttl: Lifetime of issued signed URLs, in seconds
        max_parts: Largest part count storage accepts for one object
    """

    single_put_threshold: int = 10 * MB
    part_size: int = 10 * MB
    max_concurrent_parts: int = 3
    url_ttl: int = 3600
    max_parts: int = 10_000

    def __post_init__(self) -> None:
        if self.part_size <= 0:
            raise ValueError("part_size must be positive")
        if self.max_concurrent_parts <= 0:
            raise ValueError("max_concurrent_parts must be positive")
        if self.url_ttl <= 0:
            raise ValueError("url_ttl must be positive")

    def parts_count(self, size: int) -> int:
        """Number of parts a file of ``size`` bytes splits into."""
        return math.ceil(size / self.part_size)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    ENV: str = "local"
    SERVICE_NAME: str = "direct-upload-service"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Storage Configuration
    STORAGE_BACKEND: str = "local"  # "local", "gcs" or "s3"
    UPLOAD_KEY_PREFIX: str = "uploads/"

    # GCP Configuration
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""
    GCS_SIGN_WITH_IAM: bool = False  # Sign through IAM signBlob (Cloud Run, no key file)

    # AWS Configuration
    S3_BUCKET: str = ""
    AWS_REGION: str = "us-east-1"
    S3_ENDPOINT_URL: str = ""  # Set for S3-compatible services (R2, MinIO)

    # Local development storage
    LOCAL_STORAGE_PATH: str = "data/storage"
    LOCAL_STORAGE_BASE_URL: str = "http://localhost:8000"
    LOCAL_STORAGE_SIGNING_KEY: str = "local-dev-signing-key"

    # Upload Constraints
    SINGLE_PUT_THRESHOLD_MB: int = 10  # Files larger than this use multipart
    PART_SIZE_MB: int = 10
    MAX_CONCURRENT_PARTS: int = 3
    URL_TTL_SECONDS: int = 3600
    MAX_PARTS: int = 10_000

    @property
    def single_put_threshold_bytes(self) -> int:
        """Convert SINGLE_PUT_THRESHOLD_MB to bytes."""
        return self.SINGLE_PUT_THRESHOLD_MB * MB

    @property
    def part_size_bytes(self) -> int:
        """Convert PART_SIZE_MB to bytes."""
        return self.PART_SIZE_MB * MB

    def upload_config(self) -> UploadConfig:
        """Build the immutable upload configuration from current settings."""
        return UploadConfig(
            single_put_threshold=self.single_put_threshold_bytes,
            part_size=self.part_size_bytes,
            max_concurrent_parts=self.MAX_CONCURRENT_PARTS,
            url_ttl=self.URL_TTL_SECONDS,
            max_parts=self.MAX_PARTS,
        )


# Singleton settings instance
settings = Settings()
