"""Abstract storage gateway interface."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from directupload.models.session import UploadPart


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata of an object that exists in storage."""

    integrity_token: str
    size: int


@dataclass(frozen=True)
class CompletedObject:
    """Result of assembling a multipart object."""

    integrity_token: str
    size: Optional[int] = None


def normalize_token(token: str) -> str:
    """Strip the quotes storage backends wrap around ETags."""
    return token.strip().strip('"')


def sanitize_filename(filename: str) -> str:
    """Remove path traversal and dangerous characters."""
    safe = filename.replace("../", "").replace("..\\", "")
    safe = safe.replace("/", "_").replace("\\", "_")
    safe = re.sub(r"[^a-zA-Z0-9._-]", "_", safe)
    return safe[:255]


class StorageGateway(ABC):
    """Narrow contract the upload coordinator needs from object storage."""

    @property
    @abstractmethod
    def bucket_name(self) -> str:
        """Name of the bucket or container objects land in."""
        pass

    @abstractmethod
    async def issue_put_url(self, key: str, content_type: Optional[str], ttl: int) -> str:
        """Return a signed URL authorizing one PUT of the whole object.

        Args:
            key: Destination storage key
            content_type: MIME type the client will send, if known
            ttl: URL lifetime in seconds

        Returns:
            Signed URL
        """
        pass

    @abstractmethod
    async def issue_part_url(self, key: str, multipart_id: str, part_number: int, ttl: int) -> str:
        """Return a signed URL authorizing one PUT of exactly one part."""
        pass

    @abstractmethod
    async def open_multipart(self, key: str, content_type: Optional[str]) -> str:
        """Start a multipart sequence and return its storage handle."""
        pass

    @abstractmethod
    async def complete_multipart(
        self, key: str, multipart_id: str, parts: Sequence[UploadPart]
    ) -> CompletedObject:
        """Assemble the object from ``parts`` (sorted ascending by part number).

        Raises:
            IntegrityError: If storage rejects any part token
        """
        pass

    @abstractmethod
    async def abort_multipart(self, key: str, multipart_id: str) -> None:
        """Abort a multipart sequence, releasing uploaded parts."""
        pass

    @abstractmethod
    async def head_object(self, key: str) -> ObjectInfo:
        """Return metadata of an existing object.

        Raises:
            NotFoundError: If the object does not exist
        """
        pass

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        """Delete an object. Deleting a missing object is not an error."""
        pass

    @abstractmethod
    async def issue_get_url(self, key: str, ttl: int) -> str:
        """Return a signed URL for downloading a finished object."""
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass
