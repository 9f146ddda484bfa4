"""Google Cloud Storage gateway.

Single-object and per-part uploads use V4 signed URLs. Multipart sequences go
through the GCS XML multipart API; the initiate, complete and abort calls are
themselves sent to short-lived signed URLs so no second credential path is
needed.
"""

import asyncio
import base64
import logging
import xml.etree.ElementTree as ET
from datetime import timedelta
from typing import Any, Optional, Sequence

import httpx
from google.api_core.exceptions import GoogleAPIError, NotFound
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from directupload.core.exceptions import IntegrityError, NotFoundError, StorageError
from directupload.models.session import UploadPart
from directupload.storage.base import (
    CompletedObject,
    ObjectInfo,
    StorageGateway,
    normalize_token,
)

logger = logging.getLogger(__name__)

# Lifetime of the signed URLs used for server-side multipart control calls
CONTROL_URL_TTL_SECONDS = 300

# XML API error codes that mean the submitted part list does not match storage
_PART_MISMATCH_CODES = {"InvalidPart", "InvalidPartOrder", "EntityTooSmall", "NoSuchUpload"}


class GCSStorageGateway(StorageGateway):
    """Google Cloud Storage gateway."""

    def __init__(
        self,
        bucket_name: str,
        project_id: str | None = None,
        sign_with_iam: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        request_timeout: float = 30.0,
    ):
        if not bucket_name:
            raise ValueError("GCS_BUCKET_NAME not configured")
        self._bucket_name = bucket_name
        self._project_id = project_id
        self._sign_with_iam = sign_with_iam
        self._transport = transport
        self._request_timeout = request_timeout
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None
        self._signing_credentials: Any = None

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            self._client = storage.Client(project=self._project_id or None)
            self._bucket = self._client.bucket(self._bucket_name)
        return self._bucket

    def _signing_kwargs(self) -> dict[str, Any]:
        """Credentials arguments for generate_signed_url.

        Without IAM signing the client's own credentials are used, which must
        be a service account key. With IAM signing the compute engine
        identity signs through the signBlob API; that service account needs
        roles/iam.serviceAccountTokenCreator on itself.
        """
        if not self._sign_with_iam:
            return {}

        if self._signing_credentials is None:
            from google.auth import compute_engine, iam
            from google.auth.transport import requests as auth_requests
            from google.oauth2 import service_account

            credentials = compute_engine.Credentials()
            auth_request = auth_requests.Request()
            credentials.refresh(auth_request)
            service_account_email = credentials.service_account_email

            signer = iam.Signer(
                request=auth_request,
                credentials=credentials,
                service_account_email=service_account_email,
            )
            # token_uri is required by the constructor; signing goes through the IAM signer
            self._signing_credentials = service_account.Credentials(
                signer=signer,
                service_account_email=service_account_email,
                token_uri="https://oauth2.googleapis.com/token",
            )

        return {
            "credentials": self._signing_credentials,
            "service_account_email": self._signing_credentials.service_account_email,
        }

    def _sign(
        self,
        key: str,
        method: str,
        ttl: int,
        content_type: Optional[str] = None,
        query_parameters: Optional[dict[str, str]] = None,
    ) -> str:
        blob = self._get_bucket().blob(key)
        kwargs: dict[str, Any] = {
            "version": "v4",
            "expiration": timedelta(seconds=ttl),
            "method": method,
        }
        if content_type:
            kwargs["content_type"] = content_type
        if query_parameters:
            kwargs["query_parameters"] = query_parameters
        kwargs.update(self._signing_kwargs())
        return blob.generate_signed_url(**kwargs)

    async def _signed(self, *args: Any, **kwargs: Any) -> str:
        try:
            return await asyncio.to_thread(self._sign, *args, **kwargs)
        except (GoogleAPIError, GoogleAuthError) as e:
            raise StorageError(f"Failed to sign URL: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        url: str,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self._request_timeout, transport=self._transport
        ) as client:
            return await client.request(method, url, content=content, headers=headers)

    async def _control_call(
        self,
        method: str,
        url: str,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return await self._send(method, url, content=content, headers=headers)
        except httpx.TransportError as e:
            raise StorageError(f"GCS {method} request failed: {e}") from e

    async def issue_put_url(self, key: str, content_type: Optional[str], ttl: int) -> str:
        return await self._signed(key, "PUT", ttl, content_type=content_type)

    async def issue_part_url(self, key: str, multipart_id: str, part_number: int, ttl: int) -> str:
        return await self._signed(
            key,
            "PUT",
            ttl,
            query_parameters={"partNumber": str(part_number), "uploadId": multipart_id},
        )

    async def open_multipart(self, key: str, content_type: Optional[str]) -> str:
        url = await self._signed(
            key,
            "POST",
            CONTROL_URL_TTL_SECONDS,
            content_type=content_type,
            query_parameters={"uploads": ""},
        )
        headers = {"Content-Type": content_type} if content_type else {}
        response = await self._control_call("POST", url, headers=headers)
        if response.status_code != 200:
            raise StorageError(
                f"GCS refused to start multipart upload ({response.status_code}): {_error_code(response)}"
            )

        upload_id = _parse_xml(response, "initiate").findtext("{*}UploadId")
        if not upload_id:
            raise StorageError("GCS multipart initiate response carried no UploadId")

        logger.info(
            "Opened GCS multipart upload",
            extra={"bucket": self._bucket_name, "storage_key": key, "multipart_id": upload_id},
        )
        return upload_id

    async def complete_multipart(
        self, key: str, multipart_id: str, parts: Sequence[UploadPart]
    ) -> CompletedObject:
        url = await self._signed(
            key,
            "POST",
            CONTROL_URL_TTL_SECONDS,
            query_parameters={"uploadId": multipart_id},
        )
        body = _complete_body(parts)
        response = await self._control_call(
            "POST", url, content=body, headers={"Content-Type": "application/xml"}
        )

        if response.status_code != 200:
            code = _error_code(response)
            if response.status_code == 400 or code in _PART_MISMATCH_CODES:
                raise IntegrityError(f"GCS rejected the part list: {code}")
            raise StorageError(f"GCS multipart completion failed ({response.status_code}): {code}")

        root = _parse_xml(response, "completion")
        if root.tag.endswith("Error"):
            raise IntegrityError(f"GCS rejected the part list: {root.findtext('{*}Code')}")
        etag = root.findtext("{*}ETag") or ""
        return CompletedObject(integrity_token=normalize_token(etag))

    async def abort_multipart(self, key: str, multipart_id: str) -> None:
        url = await self._signed(
            key,
            "DELETE",
            CONTROL_URL_TTL_SECONDS,
            query_parameters={"uploadId": multipart_id},
        )
        response = await self._control_call("DELETE", url)
        # 404 means the sequence is already gone, which is the state we want
        if response.status_code not in (200, 204, 404):
            raise StorageError(
                f"GCS multipart abort failed ({response.status_code}): {_error_code(response)}"
            )
        logger.info(
            "Aborted GCS multipart upload",
            extra={"bucket": self._bucket_name, "storage_key": key, "multipart_id": multipart_id},
        )

    async def head_object(self, key: str) -> ObjectInfo:
        try:
            blob = await asyncio.to_thread(self._get_bucket().get_blob, key)
        except GoogleAPIError as e:
            raise StorageError(f"Failed to read object metadata: {e}") from e

        if blob is None:
            raise NotFoundError(f"Object not found: gs://{self._bucket_name}/{key}")

        # md5_hash is base64; other backends report MD5 as hex. Composite objects have none.
        if blob.md5_hash:
            token = base64.b64decode(blob.md5_hash).hex()
        else:
            token = normalize_token(blob.etag or "")
        return ObjectInfo(integrity_token=token, size=int(blob.size or 0))

    def _delete_blob(self, key: str) -> None:
        try:
            self._get_bucket().blob(key).delete()
        except NotFound:
            pass

    async def delete_object(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._delete_blob, key)
        except GoogleAPIError as e:
            raise StorageError(f"Failed to delete object: {e}") from e
        logger.info("Deleted GCS object", extra={"bucket": self._bucket_name, "storage_key": key})

    async def issue_get_url(self, key: str, ttl: int) -> str:
        return await self._signed(key, "GET", ttl)

    def get_backend_name(self) -> str:
        return "gcs"


def _complete_body(parts: Sequence[UploadPart]) -> bytes:
    root = ET.Element("CompleteMultipartUpload")
    for part in parts:
        element = ET.SubElement(root, "Part")
        ET.SubElement(element, "PartNumber").text = str(part.part_number)
        ET.SubElement(element, "ETag").text = f'"{part.integrity_token}"'
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _parse_xml(response: httpx.Response, operation: str) -> ET.Element:
    try:
        return ET.fromstring(response.content)
    except ET.ParseError as e:
        raise StorageError(f"GCS multipart {operation} returned malformed XML: {e}") from e


def _error_code(response: httpx.Response) -> str:
    """Extract the <Code> from an XML API error body, falling back to the raw text."""
    try:
        root = ET.fromstring(response.content)
    except ET.ParseError:
        return response.text[:200]
    return root.findtext("{*}Code") or response.text[:200]
