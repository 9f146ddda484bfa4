"""Amazon S3 (and S3-compatible) storage gateway."""

import asyncio
import logging
from typing import Any, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from directupload.core.exceptions import IntegrityError, NotFoundError, StorageError
from directupload.models.session import UploadPart
from directupload.storage.base import (
    CompletedObject,
    ObjectInfo,
    StorageGateway,
    normalize_token,
)

logger = logging.getLogger(__name__)

_PART_MISMATCH_CODES = {"InvalidPart", "InvalidPartOrder", "EntityTooSmall", "NoSuchUpload"}
_MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3StorageGateway(StorageGateway):
    """S3 gateway backed by boto3.

    boto3 is blocking, so every network call runs in a worker thread.
    Presigning is a local computation and stays on the event loop.
    """

    def __init__(
        self,
        bucket_name: str,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ):
        if not bucket_name:
            raise ValueError("S3_BUCKET not configured")
        self._bucket_name = bucket_name
        self._client = client or boto3.client(
            "s3",
            region_name=region_name or None,
            endpoint_url=endpoint_url or None,
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
        )

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def _presign(self, operation: str, ttl: int, **params: Any) -> str:
        try:
            return self._client.generate_presigned_url(
                operation,
                Params={"Bucket": self._bucket_name, **params},
                ExpiresIn=ttl,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to presign {operation}: {e}") from e

    async def issue_put_url(self, key: str, content_type: Optional[str], ttl: int) -> str:
        params: dict[str, Any] = {"Key": key}
        if content_type:
            params["ContentType"] = content_type
        return self._presign("put_object", ttl, **params)

    async def issue_part_url(self, key: str, multipart_id: str, part_number: int, ttl: int) -> str:
        return self._presign(
            "upload_part", ttl, Key=key, UploadId=multipart_id, PartNumber=part_number
        )

    async def open_multipart(self, key: str, content_type: Optional[str]) -> str:
        params: dict[str, Any] = {"Bucket": self._bucket_name, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        try:
            response = await asyncio.to_thread(self._client.create_multipart_upload, **params)
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to start S3 multipart upload",
                extra={"bucket": self._bucket_name, "storage_key": key, "error": str(e)},
            )
            raise StorageError(f"Failed to start multipart upload: {e}") from e

        upload_id = response["UploadId"]
        logger.info(
            "Opened S3 multipart upload",
            extra={"bucket": self._bucket_name, "storage_key": key, "multipart_id": upload_id},
        )
        return upload_id

    async def complete_multipart(
        self, key: str, multipart_id: str, parts: Sequence[UploadPart]
    ) -> CompletedObject:
        manifest = [
            {"PartNumber": part.part_number, "ETag": f'"{part.integrity_token}"'} for part in parts
        ]
        try:
            response = await asyncio.to_thread(
                self._client.complete_multipart_upload,
                Bucket=self._bucket_name,
                Key=key,
                UploadId=multipart_id,
                MultipartUpload={"Parts": manifest},
            )
        except ClientError as e:
            code = _error_code(e)
            if code in _PART_MISMATCH_CODES:
                raise IntegrityError(f"S3 rejected the part list: {code}") from e
            raise StorageError(f"Failed to complete multipart upload: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to complete multipart upload: {e}") from e

        return CompletedObject(integrity_token=normalize_token(response.get("ETag", "")))

    async def abort_multipart(self, key: str, multipart_id: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.abort_multipart_upload,
                Bucket=self._bucket_name,
                Key=key,
                UploadId=multipart_id,
            )
        except ClientError as e:
            if _error_code(e) != "NoSuchUpload":
                raise StorageError(f"Failed to abort multipart upload: {e}") from e
            logger.warning(
                "S3 multipart upload already gone",
                extra={"storage_key": key, "multipart_id": multipart_id},
            )
        except BotoCoreError as e:
            raise StorageError(f"Failed to abort multipart upload: {e}") from e

    async def head_object(self, key: str) -> ObjectInfo:
        try:
            response = await asyncio.to_thread(
                self._client.head_object, Bucket=self._bucket_name, Key=key
            )
        except ClientError as e:
            if _error_code(e) in _MISSING_OBJECT_CODES:
                raise NotFoundError(f"Object not found: s3://{self._bucket_name}/{key}") from e
            raise StorageError(f"Failed to read object metadata: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read object metadata: {e}") from e

        return ObjectInfo(
            integrity_token=normalize_token(response.get("ETag", "")),
            size=int(response.get("ContentLength", 0)),
        )

    async def delete_object(self, key: str) -> None:
        # S3 answers 204 for keys that do not exist
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete object: {e}") from e
        logger.info("Deleted S3 object", extra={"bucket": self._bucket_name, "storage_key": key})

    async def issue_get_url(self, key: str, ttl: int) -> str:
        return self._presign("get_object", ttl, Key=key)

    def get_backend_name(self) -> str:
        return "s3"
