"""Upload session entity and its state machine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from directupload.core.exceptions import InvalidStateError


class UploadStrategy(str, Enum):
    """How the file bytes reach storage."""

    SINGLE = "single"  # One signed PUT for the whole object
    MULTIPART = "multipart"  # Independently uploaded parts stitched at completion


class UploadStatus(str, Enum):
    """Upload session status."""

    PENDING = "pending"  # Session created, no signed URL issued yet
    UPLOADING = "uploading"  # Client is transferring bytes
    COMPLETING = "completing"  # Part list submitted, storage is assembling
    COMPLETE = "complete"  # Object confirmed in storage
    ABORTED = "aborted"  # Abandoned, multipart parts released

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.COMPLETE, UploadStatus.ABORTED)


ALLOWED_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.UPLOADING, UploadStatus.ABORTED}),
    UploadStatus.UPLOADING: frozenset(
        {UploadStatus.COMPLETING, UploadStatus.COMPLETE, UploadStatus.ABORTED}
    ),
    # Storage rejecting the part list sends the session back to uploading
    UploadStatus.COMPLETING: frozenset(
        {UploadStatus.COMPLETE, UploadStatus.UPLOADING, UploadStatus.ABORTED}
    ),
    UploadStatus.COMPLETE: frozenset(),
    UploadStatus.ABORTED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UploadPart:
    """One finalized part of a multipart object."""

    part_number: int
    integrity_token: str
    size: Optional[int] = None


@dataclass(frozen=True)
class UploadSession:
    """Upload session record.

    Sessions are immutable values; the store swaps in a new instance on every
    update so a reader never observes a half-applied change.
    """

    id: str
    resource_name: str
    file_name: str
    storage_key: str
    bucket: str
    declared_size: int
    declared_content_type: str
    strategy: UploadStrategy
    status: UploadStatus = UploadStatus.PENDING
    description: Optional[str] = None
    multipart_id: Optional[str] = None
    part_size: Optional[int] = None
    parts_count: Optional[int] = None
    parts: tuple[UploadPart, ...] = ()
    final_integrity_token: Optional[str] = None
    final_size: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_multipart(self) -> bool:
        return self.strategy == UploadStrategy.MULTIPART

    @property
    def has_active_multipart(self) -> bool:
        """True while a storage-side multipart sequence must still be completed or aborted."""
        return self.is_multipart and self.multipart_id is not None

    def ensure_transition(self, target: UploadStatus) -> None:
        """Raise InvalidStateError unless ``target`` is reachable from the current status."""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Upload session {self.id} cannot move from {self.status.value} to {target.value}"
            )
