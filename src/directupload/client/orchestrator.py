"""Chunked upload orchestrator.

Drives the part PUTs of one multipart upload: every part gets its own signed
URL, at most ``max_concurrent_parts`` transfers are in flight, progress is
reported by bytes, and the first failure or an explicit cancel stops every
outstanding transfer.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Optional, Union

import httpx

from directupload.client.chunking import PartRange, plan_parts
from directupload.core.config import UploadConfig
from directupload.core.exceptions import TransportError
from directupload.storage.base import normalize_token

logger = logging.getLogger(__name__)

PartSource = Union[str, Path, bytes]
UrlProvider = Callable[[int], Awaitable[str]]
ProgressCallback = Callable[[float], None]


class TransferStatus(str, Enum):
    """Terminal outcome of a multipart transfer."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class CompletedPart:
    """A part storage accepted, with the token it returned."""

    part_number: int
    integrity_token: str
    size: int


@dataclass(frozen=True)
class MultipartOutcome:
    status: TransferStatus
    parts: tuple[CompletedPart, ...] = ()
    error: Optional[BaseException] = None
    uploaded_bytes: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == TransferStatus.COMPLETED


class PrefetchedUrls:
    """URL provider backed by part URLs fetched in bulk before the transfer."""

    def __init__(self, urls: Mapping[int, str]):
        self._urls = dict(urls)

    async def __call__(self, part_number: int) -> str:
        try:
            return self._urls[part_number]
        except KeyError:
            raise TransportError(
                f"Missing signed URL for part {part_number}", part_number=part_number
            ) from None


def _read_range(path: Union[str, Path], start: int, size: int) -> bytes:
    with open(path, "rb") as f:
        f.seek(start)
        return f.read(size)


async def read_part(source: PartSource, part: PartRange) -> bytes:
    """Load one part's bytes from memory or from disk (in a worker thread)."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source[part.start:part.end])
    return await asyncio.to_thread(_read_range, source, part.start, part.size)


class ChunkedUploadOrchestrator:
    """Uploads the parts of one multipart session.

    An instance runs one transfer. Completed parts are kept in an append-only
    tuple owned by ``run``; workers only return values and never share
    mutable state.
    """

    def __init__(
        self,
        config: UploadConfig,
        http_client: httpx.AsyncClient,
        url_provider: UrlProvider,
    ):
        self.config = config
        self._http = http_client
        self._url_provider = url_provider
        self._cancel_event = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self.progress = 0.0

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop the transfer: no new parts start and in-flight PUTs are cancelled."""
        self._cancel_event.set()
        for task in self._tasks:
            task.cancel()

    async def _upload_part(self, source: PartSource, part: PartRange) -> CompletedPart:
        async with self._semaphore:
            if self._cancel_event.is_set():
                raise asyncio.CancelledError()

            url = await self._url_provider(part.part_number)
            body = await read_part(source, part)
            try:
                response = await self._http.put(url, content=body)
            except httpx.HTTPError as e:
                raise TransportError(
                    f"Part {part.part_number} upload failed: {e}", part_number=part.part_number
                ) from e

            if not response.is_success:
                raise TransportError(
                    f"Part {part.part_number} failed ({response.status_code})",
                    part_number=part.part_number,
                    status_code=response.status_code,
                )
            etag = response.headers.get("etag")
            if not etag or not normalize_token(etag):
                raise TransportError(
                    f"Part {part.part_number} response carried no ETag",
                    part_number=part.part_number,
                    status_code=response.status_code,
                )

            logger.debug(
                "Part uploaded",
                extra={"part_number": part.part_number, "size": part.size},
            )
            return CompletedPart(
                part_number=part.part_number,
                integrity_token=normalize_token(etag),
                size=part.size,
            )

    async def _stop_all(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    def _cancelled_outcome(self, on_progress: Optional[ProgressCallback]) -> MultipartOutcome:
        # Accumulated parts are discarded; the session is going to be aborted
        self.progress = 0.0
        if on_progress:
            on_progress(0.0)
        return MultipartOutcome(status=TransferStatus.CANCELLED)

    async def run(
        self,
        source: PartSource,
        file_size: int,
        part_size: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MultipartOutcome:
        """Upload every part of ``source``.

        Args:
            source: File path or in-memory bytes
            file_size: Total size in bytes
            part_size: Part size agreed with the coordinator (defaults to config)
            on_progress: Called with a 0-100 percentage after each finished part

        Returns:
            MultipartOutcome; on success ``parts`` is sorted by part number
        """
        parts = plan_parts(file_size, part_size or self.config.part_size)
        if self._cancel_event.is_set() or not parts:
            return self._cancelled_outcome(on_progress)

        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_parts)
        self._tasks = {asyncio.create_task(self._upload_part(source, part)) for part in parts}
        completed: tuple[CompletedPart, ...] = ()
        uploaded_bytes = 0

        logger.info(
            "Starting multipart transfer",
            extra={
                "parts": len(parts),
                "file_size": file_size,
                "max_concurrent_parts": self.config.max_concurrent_parts,
            },
        )

        try:
            for finished in asyncio.as_completed(self._tasks):
                part = await finished
                completed = completed + (part,)
                uploaded_bytes += part.size
                self.progress = min(100.0, uploaded_bytes * 100.0 / file_size)
                if on_progress:
                    on_progress(self.progress)
        except asyncio.CancelledError:
            await self._stop_all()
            if not self._cancel_event.is_set():
                raise
            logger.info("Multipart transfer cancelled", extra={"parts_done": len(completed)})
            return self._cancelled_outcome(on_progress)
        except Exception as e:
            await self._stop_all()
            if self._cancel_event.is_set():
                return self._cancelled_outcome(on_progress)
            logger.error(
                f"Multipart transfer failed: {e}",
                extra={"parts_done": len(completed), "parts": len(parts)},
            )
            return MultipartOutcome(
                status=TransferStatus.FAILED, error=e, uploaded_bytes=uploaded_bytes
            )
        finally:
            self._tasks = set()

        if len(completed) != len(parts):
            return self._cancelled_outcome(on_progress)

        return MultipartOutcome(
            status=TransferStatus.COMPLETED,
            parts=tuple(sorted(completed, key=lambda p: p.part_number)),
            uploaded_bytes=uploaded_bytes,
        )
