"""Upload API data models."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from directupload.models.session import UploadPart, UploadSession


class StartUploadRequest(BaseModel):
    """Request model for starting an upload session."""

    resource_name: str
    description: Optional[str] = None
    file_name: str
    content_type: Optional[str] = None
    size: int = Field(..., ge=0)


class StartUploadResponse(BaseModel):
    """Response model for upload session creation."""

    session_id: str
    strategy: Literal["single", "multipart"]
    storage_key: str
    upload_url: Optional[str] = None
    part_size: Optional[int] = None
    parts_count: Optional[int] = None
    expires_at: Optional[datetime] = None


class PartUrlResponse(BaseModel):
    """Signed URL for one multipart part."""

    part_number: int
    url: str
    expires_at: datetime


class PartUrlsRequest(BaseModel):
    """Request model for fetching several part URLs at once."""

    session_id: str
    part_numbers: Optional[list[int]] = None


class PartUrlsResponse(BaseModel):
    session_id: str
    urls: list[PartUrlResponse]


class PartIn(BaseModel):
    """One uploaded part as reported by the client.

    Storage-native spellings (``PartNumber``, ``ETag``) are accepted too.
    """

    model_config = ConfigDict(populate_by_name=True)

    part_number: int = Field(
        ..., validation_alias=AliasChoices("part_number", "partNumber", "PartNumber")
    )
    integrity_token: str = Field(
        ..., validation_alias=AliasChoices("integrity_token", "integrityToken", "etag", "ETag")
    )
    size: Optional[int] = Field(None, validation_alias=AliasChoices("size", "Size"))

    def to_part(self) -> UploadPart:
        return UploadPart(
            part_number=self.part_number,
            integrity_token=self.integrity_token,
            size=self.size,
        )


class CompleteUploadRequest(BaseModel):
    """Request model for completing an upload."""

    session_id: str
    parts: Optional[list[PartIn]] = None


class AbortUploadRequest(BaseModel):
    """Request model for aborting an upload."""

    session_id: str


class PartOut(BaseModel):
    part_number: int
    integrity_token: str
    size: Optional[int] = None


class SessionView(BaseModel):
    """Client-facing view of an upload session."""

    session_id: str
    resource_name: str
    description: Optional[str] = None
    file_name: str
    storage_key: str
    bucket: str
    content_type: str
    declared_size: int
    strategy: Literal["single", "multipart"]
    status: Literal["pending", "uploading", "completing", "complete", "aborted"]
    part_size: Optional[int] = None
    parts_count: Optional[int] = None
    parts: list[PartOut] = []
    final_integrity_token: Optional[str] = None
    final_size: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: UploadSession) -> "SessionView":
        # multipart_id is a storage handle and stays server-side
        return cls(
            session_id=session.id,
            resource_name=session.resource_name,
            description=session.description,
            file_name=session.file_name,
            storage_key=session.storage_key,
            bucket=session.bucket,
            content_type=session.declared_content_type,
            declared_size=session.declared_size,
            strategy=session.strategy.value,
            status=session.status.value,
            part_size=session.part_size,
            parts_count=session.parts_count,
            parts=[
                PartOut(part_number=p.part_number, integrity_token=p.integrity_token, size=p.size)
                for p in session.parts
            ],
            final_integrity_token=session.final_integrity_token,
            final_size=session.final_size,
            created_at=session.created_at,
            updated_at=session.updated_at,
            completed_at=session.completed_at,
        )


class SessionResponse(BaseModel):
    ok: bool = True
    session: SessionView


class AbortUploadResponse(BaseModel):
    ok: bool = True
    message: str
    session: SessionView


class DownloadUrlResponse(BaseModel):
    url: str
    expires_at: datetime


class ErrorResponse(BaseModel):
    error: str
    detail: str


class DeleteUploadResponse(BaseModel):
    ok: bool = True
    session_id: str
    storage_key: str
