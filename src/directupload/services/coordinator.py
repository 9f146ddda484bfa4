"""Upload coordinator.

Owns the upload session state machine. The coordinator never sees file bytes
and does not track individual part completion; it issues signed URLs, checks
the part list the client reports at completion, and makes sure every
multipart sequence it opens in storage is eventually completed or aborted.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence
from uuid import uuid4

from directupload.core.config import UploadConfig
from directupload.core.exceptions import (
    IntegrityError,
    InvalidStateError,
    NotFoundError,
    UploadError,
    ValidationError,
)
from directupload.models.session import (
    UploadPart,
    UploadSession,
    UploadStatus,
    UploadStrategy,
    utcnow,
)
from directupload.storage.base import StorageGateway, normalize_token, sanitize_filename
from directupload.storage.session_store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class IssuedUrl:
    """A signed URL and the instant it stops working."""

    url: str
    expires_at: datetime
    part_number: Optional[int] = None


@dataclass(frozen=True)
class StartedUpload:
    """What the client needs to begin transferring bytes."""

    session: UploadSession
    upload_url: Optional[IssuedUrl] = None

    @property
    def strategy(self) -> UploadStrategy:
        return self.session.strategy

    @property
    def part_size(self) -> Optional[int]:
        return self.session.part_size

    @property
    def parts_count(self) -> Optional[int]:
        return self.session.parts_count


@dataclass(frozen=True)
class AbortResult:
    session: UploadSession
    already_aborted: bool = False

    @property
    def message(self) -> str:
        if self.already_aborted:
            return "upload already aborted"
        if self.session.is_multipart:
            return "multipart upload aborted"
        return "single upload marked aborted"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required")
    return value.strip()


class UploadCoordinator:
    """Server-side authority over upload sessions."""

    def __init__(
        self,
        store: SessionStore,
        gateway: StorageGateway,
        config: UploadConfig,
        key_prefix: str = "",
    ):
        self.store = store
        self.gateway = gateway
        self.config = config
        self.key_prefix = key_prefix

    def generate_key(self, file_name: str) -> str:
        """Build a fresh storage key for ``file_name``."""
        return f"{self.key_prefix}{uuid4()}-{sanitize_filename(file_name)}"

    def choose_strategy(self, size: int) -> UploadStrategy:
        if size <= self.config.single_put_threshold:
            return UploadStrategy.SINGLE
        return UploadStrategy.MULTIPART

    def _expiry(self) -> datetime:
        return utcnow() + timedelta(seconds=self.config.url_ttl)

    async def get_session(self, session_id: str) -> UploadSession:
        """Fetch a session.

        Raises:
            ValidationError: If session_id is blank
            NotFoundError: If the session does not exist
        """
        session_id = _require_text(session_id, "session_id")
        session = await self.store.get(session_id)
        if session is None:
            raise NotFoundError(f"Upload session {session_id} not found")
        return session

    async def _transition(self, session_id: str, target: UploadStatus, **fields: Any) -> UploadSession:
        """Write ``target`` after re-reading the session.

        Storage calls run between reading a session and writing its new status,
        and another request may have moved the session meanwhile. The status is
        checked against the stored record right before the write.
        """
        current = await self.get_session(session_id)
        current.ensure_transition(target)
        return await self.store.update(session_id, status=target, **fields)

    async def start_upload(
        self,
        resource_name: str,
        file_name: str,
        content_type: Optional[str],
        size: int,
        description: Optional[str] = None,
    ) -> StartedUpload:
        """Create a session, pick the strategy and prepare storage for the transfer.

        Args:
            resource_name: Name of the resource the file belongs to
            file_name: Original file name
            content_type: Declared MIME type
            size: Declared size in bytes
            description: Optional free-text description

        Returns:
            StartedUpload with a signed PUT URL (single) or part layout (multipart)

        Raises:
            ValidationError: If required fields are missing or malformed
            StorageError: If storage could not be prepared; the session stays pending
        """
        resource_name = _require_text(resource_name, "resource_name")
        file_name = _require_text(file_name, "file_name")
        if not _is_int(size) or size < 0:
            raise ValidationError("size must be a non-negative integer")
        content_type = (content_type or "").strip() or DEFAULT_CONTENT_TYPE

        strategy = self.choose_strategy(size)
        part_size = parts_count = None
        if strategy == UploadStrategy.MULTIPART:
            part_size = self.config.part_size
            parts_count = self.config.parts_count(size)
            if parts_count > self.config.max_parts:
                raise ValidationError(
                    f"File would need {parts_count} parts, more than the limit of {self.config.max_parts}"
                )

        session = UploadSession(
            id=uuid4().hex,
            resource_name=resource_name,
            description=description,
            file_name=file_name,
            storage_key=self.generate_key(file_name),
            bucket=self.gateway.bucket_name,
            declared_size=size,
            declared_content_type=content_type,
            strategy=strategy,
            part_size=part_size,
            parts_count=parts_count,
        )
        await self.store.create(session)

        if strategy == UploadStrategy.SINGLE:
            url = await self.gateway.issue_put_url(
                session.storage_key, content_type, self.config.url_ttl
            )
            session.ensure_transition(UploadStatus.UPLOADING)
            session = await self.store.update(session.id, status=UploadStatus.UPLOADING)

            logger.info(
                "Upload session started",
                extra={
                    "session_id": session.id,
                    "strategy": strategy.value,
                    "size": size,
                    "storage_key": session.storage_key,
                },
            )
            return StartedUpload(session=session, upload_url=IssuedUrl(url=url, expires_at=self._expiry()))

        multipart_id = await self.gateway.open_multipart(session.storage_key, content_type)
        session.ensure_transition(UploadStatus.UPLOADING)
        session = await self.store.update(
            session.id, status=UploadStatus.UPLOADING, multipart_id=multipart_id
        )

        logger.info(
            "Upload session started",
            extra={
                "session_id": session.id,
                "strategy": strategy.value,
                "size": size,
                "part_size": part_size,
                "parts_count": parts_count,
                "storage_key": session.storage_key,
            },
        )
        return StartedUpload(session=session)

    def _check_part_request(self, session: UploadSession, part_number: Any) -> int:
        if session.status != UploadStatus.UPLOADING or not session.has_active_multipart:
            raise InvalidStateError(
                f"No multipart upload in progress for session {session.id} (status {session.status.value})"
            )
        if not _is_int(part_number) or part_number <= 0:
            raise ValidationError("part_number must be a positive integer")
        if session.parts_count is not None and part_number > session.parts_count:
            raise ValidationError(
                f"part_number {part_number} exceeds parts count {session.parts_count}"
            )
        return part_number

    async def get_part_url(self, session_id: str, part_number: int) -> IssuedUrl:
        """Issue a signed URL scoped to one part of a multipart session.

        Raises:
            NotFoundError: If the session does not exist
            InvalidStateError: If no multipart sequence is active
            ValidationError: If part_number is out of range
        """
        session = await self.get_session(session_id)
        part_number = self._check_part_request(session, part_number)
        url = await self.gateway.issue_part_url(
            session.storage_key, session.multipart_id, part_number, self.config.url_ttl
        )
        return IssuedUrl(url=url, expires_at=self._expiry(), part_number=part_number)

    async def get_part_urls(
        self, session_id: str, part_numbers: Optional[Iterable[int]] = None
    ) -> list[IssuedUrl]:
        """Issue part URLs in bulk; defaults to every part of the session."""
        session = await self.get_session(session_id)
        if part_numbers is None:
            if session.parts_count is None:
                raise InvalidStateError(f"Session {session.id} is not a multipart upload")
            part_numbers = range(1, session.parts_count + 1)
        numbers = sorted({self._check_part_request(session, n) for n in part_numbers})
        if not numbers:
            raise ValidationError("part_numbers must not be empty")

        urls = await asyncio.gather(
            *(
                self.gateway.issue_part_url(
                    session.storage_key, session.multipart_id, n, self.config.url_ttl
                )
                for n in numbers
            )
        )
        expires_at = self._expiry()
        return [IssuedUrl(url=url, expires_at=expires_at, part_number=n) for n, url in zip(numbers, urls)]

    def normalize_parts(self, session: UploadSession, parts: Optional[Sequence[Any]]) -> tuple[UploadPart, ...]:
        """Validate a reported part list and return it sorted by part number.

        Client order is not trusted. Each entry needs ``part_number`` (positive
        int, within the session's parts count) and a non-empty
        ``integrity_token``; duplicates are rejected.
        """
        if not parts:
            raise ValidationError("Parts are required for multipart complete")

        normalized = []
        for entry in parts:
            part_number = getattr(entry, "part_number", None)
            token = getattr(entry, "integrity_token", None)
            size = getattr(entry, "size", None)
            if not _is_int(part_number) or part_number <= 0:
                raise ValidationError("Invalid parts provided: part_number must be a positive integer")
            if not isinstance(token, str) or not normalize_token(token):
                raise ValidationError(f"Invalid parts provided: part {part_number} has no integrity token")
            if session.parts_count is not None and part_number > session.parts_count:
                raise ValidationError(
                    f"Invalid parts provided: part {part_number} exceeds parts count {session.parts_count}"
                )
            normalized.append(UploadPart(part_number=part_number, integrity_token=normalize_token(token), size=size))

        normalized.sort(key=lambda p: p.part_number)
        for previous, current in zip(normalized, normalized[1:]):
            if current.part_number <= previous.part_number:
                raise ValidationError(f"Invalid parts provided: part {current.part_number} is duplicated")
        return tuple(normalized)

    async def complete_upload(
        self, session_id: str, parts: Optional[Sequence[Any]] = None
    ) -> UploadSession:
        """Confirm the object landed in storage and move the session to complete.

        Args:
            session_id: Session to finalize
            parts: Uploaded parts (multipart only), in any order

        Returns:
            The completed session

        Raises:
            NotFoundError: If the session does not exist
            InvalidStateError: If the session is not uploading
            ValidationError: If the part list is empty or malformed
            IntegrityError: If storage does not hold what the client reported;
                the session stays uploading and the call can be retried
        """
        session = await self.get_session(session_id)
        if session.strategy == UploadStrategy.SINGLE:
            return await self._complete_single(session, parts)
        return await self._complete_multipart(session, parts)

    async def _complete_single(self, session: UploadSession, parts: Optional[Sequence[Any]]) -> UploadSession:
        session.ensure_transition(UploadStatus.COMPLETE)
        if parts:
            raise ValidationError("Parts are not accepted for a single upload")

        try:
            info = await self.gateway.head_object(session.storage_key)
        except NotFoundError as e:
            logger.warning(
                "Single upload completion found no object",
                extra={"session_id": session.id, "storage_key": session.storage_key},
            )
            raise IntegrityError(f"Object for session {session.id} is not present in storage") from e

        session = await self._transition(
            session.id,
            UploadStatus.COMPLETE,
            final_integrity_token=info.integrity_token,
            final_size=info.size,
            completed_at=utcnow(),
        )
        logger.info(
            "Upload completed",
            extra={"session_id": session.id, "strategy": "single", "size": info.size},
        )
        return session

    async def _complete_multipart(self, session: UploadSession, parts: Optional[Sequence[Any]]) -> UploadSession:
        if session.status != UploadStatus.COMPLETING:
            session.ensure_transition(UploadStatus.COMPLETING)
        if not session.has_active_multipart:
            raise InvalidStateError(f"No multipart upload in progress for session {session.id}")
        ordered = self.normalize_parts(session, parts)

        session = await self.store.update(session.id, status=UploadStatus.COMPLETING)
        try:
            completed = await self.gateway.complete_multipart(
                session.storage_key, session.multipart_id, ordered
            )
        except Exception as e:
            current = await self.get_session(session.id)
            # An abort that landed meanwhile already released the sequence
            if current.status == UploadStatus.COMPLETING:
                await self.store.update(session.id, status=UploadStatus.UPLOADING)
            logger.warning(
                "Storage rejected multipart completion",
                extra={
                    "session_id": session.id,
                    "parts": len(ordered),
                    "status": current.status.value,
                    "error": str(e),
                },
            )
            raise

        final_size = completed.size
        final_token = completed.integrity_token
        try:
            info = await self.gateway.head_object(session.storage_key)
            final_size = info.size
            final_token = final_token or info.integrity_token
        except UploadError as e:
            # The object is assembled; size falls back to what completion reported
            logger.warning(
                "Metadata lookup after multipart completion failed",
                extra={"session_id": session.id, "error": str(e)},
            )
            if final_size is None:
                final_size = sum(p.size or 0 for p in ordered) or session.declared_size

        current = await self.get_session(session.id)
        if current.status == UploadStatus.ABORTED:
            await self._discard_assembled(current)
            raise InvalidStateError(f"Upload session {session.id} was aborted while storage assembled it")

        session = await self._transition(
            session.id,
            UploadStatus.COMPLETE,
            parts=ordered,
            multipart_id=None,
            final_integrity_token=final_token,
            final_size=final_size,
            completed_at=utcnow(),
        )
        logger.info(
            "Upload completed",
            extra={
                "session_id": session.id,
                "strategy": "multipart",
                "parts": len(ordered),
                "size": final_size,
            },
        )
        return session

    async def abort_upload(self, session_id: str) -> AbortResult:
        """Abandon a session, releasing any multipart parts held by storage.

        Aborting an already aborted session is acknowledged without change.

        Raises:
            NotFoundError: If the session does not exist
            InvalidStateError: If the session already completed
        """
        session = await self.get_session(session_id)
        if session.status == UploadStatus.ABORTED:
            return AbortResult(session=session, already_aborted=True)
        session.ensure_transition(UploadStatus.ABORTED)

        if session.has_active_multipart:
            await self.gateway.abort_multipart(session.storage_key, session.multipart_id)

        session = await self._transition(session.id, UploadStatus.ABORTED, multipart_id=None)
        logger.info(
            "Upload aborted",
            extra={"session_id": session.id, "strategy": session.strategy.value},
        )
        return AbortResult(session=session)

    async def _discard_assembled(self, session: UploadSession) -> None:
        """Delete an object storage finished assembling after its session was aborted."""
        logger.warning(
            "Multipart completion finished after abort, deleting assembled object",
            extra={"session_id": session.id, "storage_key": session.storage_key},
        )
        await self.gateway.delete_object(session.storage_key)

    async def delete_upload(self, session_id: str) -> UploadSession:
        """Remove an upload: its storage object and its session record.

        An open multipart sequence is aborted first. Deleting the object is
        safe when nothing was ever uploaded.

        Returns:
            The session as it was before deletion

        Raises:
            NotFoundError: If the session does not exist
            InvalidStateError: If storage is assembling the object right now
            StorageError: If storage could not abort or delete; the record is kept
        """
        session = await self.get_session(session_id)
        if session.status == UploadStatus.COMPLETING:
            raise InvalidStateError(
                f"Upload session {session.id} is completing; abort it before deleting"
            )

        if session.has_active_multipart:
            await self.gateway.abort_multipart(session.storage_key, session.multipart_id)
        await self.gateway.delete_object(session.storage_key)
        await self.store.delete(session.id)

        logger.info(
            "Upload deleted",
            extra={
                "session_id": session.id,
                "status": session.status.value,
                "storage_key": session.storage_key,
            },
        )
        return session

    async def get_download_url(self, session_id: str) -> IssuedUrl:
        """Issue a signed GET URL for a completed upload."""
        session = await self.get_session(session_id)
        if session.status != UploadStatus.COMPLETE:
            raise InvalidStateError(
                f"Upload session {session.id} is {session.status.value}, not complete"
            )
        url = await self.gateway.issue_get_url(session.storage_key, self.config.url_ttl)
        return IssuedUrl(url=url, expires_at=self._expiry())
