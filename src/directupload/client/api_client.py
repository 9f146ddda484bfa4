"""HTTP client for the upload coordinator API."""

import logging
from typing import Any, Iterable, Optional, Sequence

import httpx

from directupload.client.orchestrator import CompletedPart
from directupload.core.exceptions import (
    IntegrityError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    TransportError,
    UploadError,
    ValidationError,
)
from directupload.models.upload import (
    AbortUploadResponse,
    DeleteUploadResponse,
    PartUrlResponse,
    PartUrlsResponse,
    SessionResponse,
    StartUploadResponse,
)

logger = logging.getLogger(__name__)

_ERRORS_BY_KIND: dict[str, type[UploadError]] = {
    error_type.kind: error_type
    for error_type in (ValidationError, NotFoundError, InvalidStateError, IntegrityError, StorageError)
}

API_PREFIX = "/api/v1/upload"


def raise_for_error(response: httpx.Response) -> None:
    """Raise the taxonomy exception an error response describes."""
    if response.is_success:
        return
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    detail = payload.get("detail") or response.text or f"HTTP {response.status_code}"
    error_type = _ERRORS_BY_KIND.get(payload.get("error", ""), UploadError)
    raise error_type(str(detail))


class CoordinatorClient:
    """Async client for the upload coordinator endpoints.

    Args:
        base_url: Service root, e.g. ``http://localhost:8000``
        http_client: Optional shared client; one is created (and closed by
            ``aclose``) otherwise
        timeout: Request timeout in seconds for an owned client
    """

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "CoordinatorClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{API_PREFIX}{path}"
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"Coordinator request {method} {path} failed: {e}") from e
        raise_for_error(response)
        return response.json()

    async def start_upload(
        self,
        resource_name: str,
        file_name: str,
        content_type: Optional[str],
        size: int,
        description: Optional[str] = None,
    ) -> StartUploadResponse:
        payload = {
            "resource_name": resource_name,
            "description": description,
            "file_name": file_name,
            "content_type": content_type,
            "size": size,
        }
        data = await self._request("POST", "/start-upload", json=payload)
        return StartUploadResponse.model_validate(data)

    async def get_part_url(self, session_id: str, part_number: int) -> str:
        data = await self._request(
            "GET",
            "/part-url",
            params={"session_id": session_id, "part_number": part_number},
        )
        return PartUrlResponse.model_validate(data).url

    async def get_part_urls(
        self, session_id: str, part_numbers: Optional[Iterable[int]] = None
    ) -> dict[int, str]:
        payload: dict[str, Any] = {"session_id": session_id}
        if part_numbers is not None:
            payload["part_numbers"] = list(part_numbers)
        data = await self._request("POST", "/part-urls", json=payload)
        return {u.part_number: u.url for u in PartUrlsResponse.model_validate(data).urls}

    async def complete_upload(
        self, session_id: str, parts: Optional[Sequence[CompletedPart]] = None
    ) -> SessionResponse:
        payload: dict[str, Any] = {"session_id": session_id}
        if parts is not None:
            payload["parts"] = [
                {"part_number": p.part_number, "integrity_token": p.integrity_token, "size": p.size}
                for p in parts
            ]
        data = await self._request("POST", "/complete-upload", json=payload)
        return SessionResponse.model_validate(data)

    async def abort_upload(self, session_id: str) -> AbortUploadResponse:
        data = await self._request("POST", "/abort-upload", json={"session_id": session_id})
        return AbortUploadResponse.model_validate(data)

    async def get_session(self, session_id: str) -> SessionResponse:
        data = await self._request("GET", f"/sessions/{session_id}")
        return SessionResponse.model_validate(data)

    async def delete_upload(self, session_id: str) -> DeleteUploadResponse:
        data = await self._request("DELETE", f"/sessions/{session_id}")
        return DeleteUploadResponse.model_validate(data)
