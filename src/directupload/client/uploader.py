"""End-to-end client upload workflow."""

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from directupload.client.api_client import CoordinatorClient
from directupload.client.orchestrator import (
    ChunkedUploadOrchestrator,
    PrefetchedUrls,
    ProgressCallback,
    TransferStatus,
)
from directupload.core.config import UploadConfig
from directupload.core.exceptions import (
    IntegrityError,
    InvalidStateError,
    StorageError,
    TransportError,
    UploadError,
)
from directupload.models.upload import SessionView

logger = logging.getLogger(__name__)

# Completion failures where resending the same part list can succeed
_RETRYABLE_COMPLETE_ERRORS = (IntegrityError, StorageError, TransportError)


class ClientUploadStatus(str, Enum):
    """Client-side status of one upload attempt."""

    IDLE = "idle"
    STARTING = "starting"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    COMPLETE = "complete"
    ABORTED = "aborted"  # Cancelled by the user
    FAILED = "failed"  # Transport or coordinator error


@dataclass(frozen=True)
class UploadResult:
    status: ClientUploadStatus
    session_id: Optional[str] = None
    session: Optional[SessionView] = None
    error: Optional[BaseException] = None


class FileUploader:
    """Uploads one file through the coordinator, single PUT or multipart.

    The strategy is whatever the coordinator picks from the declared size. On
    cancellation or any transfer failure the session is aborted and complete
    is never called. A completion still failing after ``complete_attempts``
    tries aborts the session as well, so no multipart sequence is left open.
    """

    def __init__(
        self,
        api: CoordinatorClient,
        http_client: httpx.AsyncClient,
        config: UploadConfig = UploadConfig(),
        prefetch_part_urls: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        on_status: Optional[Callable[[ClientUploadStatus], None]] = None,
        complete_attempts: int = 2,
        complete_retry_delay: float = 1.0,
    ):
        self.api = api
        self._http = http_client
        self.config = config
        self.prefetch_part_urls = prefetch_part_urls
        self.complete_attempts = complete_attempts
        self.complete_retry_delay = complete_retry_delay
        self._on_progress = on_progress
        self._on_status = on_status
        self.status = ClientUploadStatus.IDLE
        self.progress = 0.0
        self.session_id: Optional[str] = None
        self._cancel_requested = False
        self._orchestrator: Optional[ChunkedUploadOrchestrator] = None
        self._single_task: Optional[asyncio.Task] = None

    def _set_status(self, status: ClientUploadStatus) -> None:
        self.status = status
        if self._on_status:
            self._on_status(status)

    def _set_progress(self, progress: float) -> None:
        self.progress = progress
        if self._on_progress:
            self._on_progress(progress)

    def cancel(self) -> None:
        """Abort the transfer in progress."""
        self._cancel_requested = True
        if self._orchestrator is not None:
            self._orchestrator.cancel()
        if self._single_task is not None:
            self._single_task.cancel()

    async def _abort(self, status: ClientUploadStatus, error: Optional[BaseException] = None) -> UploadResult:
        session = None
        try:
            aborted = await self.api.abort_upload(self.session_id)
            session = aborted.session
        except UploadError as e:
            logger.warning(
                f"Abort request failed: {e}",
                extra={"session_id": self.session_id},
            )
            error = error or e
        if status == ClientUploadStatus.ABORTED:
            self._set_progress(0.0)
        self._set_status(status)
        return UploadResult(status=status, session_id=self.session_id, session=session, error=error)

    async def _put_single(self, path: Path, url: str, content_type: str) -> None:
        body = await asyncio.to_thread(path.read_bytes)
        try:
            response = await self._http.put(url, content=body, headers={"Content-Type": content_type})
        except httpx.HTTPError as e:
            raise TransportError(f"Upload failed: {e}") from e
        if not response.is_success:
            raise TransportError(f"Upload failed ({response.status_code})", status_code=response.status_code)

    async def _complete(self, parts=None) -> UploadResult:
        self._set_status(ClientUploadStatus.COMPLETING)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.complete_attempts),
                wait=wait_fixed(self.complete_retry_delay),
                retry=retry_if_exception_type(_RETRYABLE_COMPLETE_ERRORS),
                reraise=True,
            ):
                with attempt:
                    completed = await self.api.complete_upload(self.session_id, parts)
        except UploadError as e:
            if isinstance(e, InvalidStateError):
                # A lost response to an earlier attempt may have completed it
                finished = await self._finished_session()
                if finished is not None:
                    return self._completed(finished)
            logger.error(
                f"Completion failed: {e}",
                extra={"session_id": self.session_id},
            )
            return await self._abort(ClientUploadStatus.FAILED, e)

        return self._completed(completed.session)

    async def _finished_session(self) -> Optional[SessionView]:
        try:
            current = await self.api.get_session(self.session_id)
        except UploadError:
            return None
        return current.session if current.session.status == "complete" else None

    def _completed(self, session: SessionView) -> UploadResult:
        self._set_progress(100.0)
        self._set_status(ClientUploadStatus.COMPLETE)
        return UploadResult(
            status=ClientUploadStatus.COMPLETE,
            session_id=self.session_id,
            session=session,
        )

    async def upload(
        self,
        path: Union[str, Path],
        resource_name: str,
        content_type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> UploadResult:
        """Upload ``path`` and return the terminal client status.

        Args:
            path: File to upload
            resource_name: Resource the file is attached to
            content_type: MIME type; guessed from the file name when omitted
            description: Optional description stored with the session

        Returns:
            UploadResult with status complete, aborted or failed
        """
        path = Path(path)
        size = path.stat().st_size
        content_type = content_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"

        self._set_status(ClientUploadStatus.STARTING)
        try:
            started = await self.api.start_upload(
                resource_name=resource_name,
                file_name=path.name,
                content_type=content_type,
                size=size,
                description=description,
            )
        except UploadError as e:
            self._set_status(ClientUploadStatus.FAILED)
            return UploadResult(status=ClientUploadStatus.FAILED, error=e)

        self.session_id = started.session_id
        logger.info(
            "Upload started",
            extra={"session_id": self.session_id, "strategy": started.strategy, "size": size},
        )
        if self._cancel_requested:
            return await self._abort(ClientUploadStatus.ABORTED)

        self._set_status(ClientUploadStatus.UPLOADING)
        if started.strategy == "single":
            self._single_task = asyncio.create_task(
                self._put_single(path, started.upload_url, content_type)
            )
            try:
                await self._single_task
            except asyncio.CancelledError:
                if not self._cancel_requested:
                    raise
                return await self._abort(ClientUploadStatus.ABORTED)
            except TransportError as e:
                return await self._abort(ClientUploadStatus.FAILED, e)
            finally:
                self._single_task = None
            return await self._complete()

        try:
            if self.prefetch_part_urls:
                url_provider = PrefetchedUrls(await self.api.get_part_urls(self.session_id))
            else:
                session_id = self.session_id

                async def url_provider(part_number: int) -> str:
                    return await self.api.get_part_url(session_id, part_number)
        except UploadError as e:
            return await self._abort(ClientUploadStatus.FAILED, e)

        self._orchestrator = ChunkedUploadOrchestrator(self.config, self._http, url_provider)
        if self._cancel_requested:
            self._orchestrator.cancel()
        try:
            outcome = await self._orchestrator.run(
                path,
                size,
                part_size=started.part_size,
                on_progress=self._set_progress,
            )
        finally:
            self._orchestrator = None

        if outcome.status == TransferStatus.COMPLETED:
            return await self._complete(outcome.parts)
        if outcome.status == TransferStatus.CANCELLED:
            return await self._abort(ClientUploadStatus.ABORTED)
        return await self._abort(ClientUploadStatus.FAILED, outcome.error)
