"""Upload API routes."""

import logging

from fastapi import APIRouter, Body, Depends, Query

from directupload.api.dependencies import get_coordinator
from directupload.core.logging import upload_session_context
from directupload.models.upload import (
    AbortUploadRequest,
    AbortUploadResponse,
    CompleteUploadRequest,
    DeleteUploadResponse,
    DownloadUrlResponse,
    PartUrlResponse,
    PartUrlsRequest,
    PartUrlsResponse,
    SessionResponse,
    SessionView,
    StartUploadRequest,
    StartUploadResponse,
)
from directupload.services.coordinator import UploadCoordinator

router = APIRouter(prefix="/api/v1/upload", tags=["upload"])
logger = logging.getLogger(__name__)


@router.post("/start-upload", response_model=StartUploadResponse, status_code=201)
async def start_upload(
    request: StartUploadRequest = Body(...),
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> StartUploadResponse:
    """Create an upload session and return how the client should send the bytes."""
    started = await coordinator.start_upload(
        resource_name=request.resource_name,
        file_name=request.file_name,
        content_type=request.content_type,
        size=request.size,
        description=request.description,
    )
    upload_session_context.set(started.session.id)

    return StartUploadResponse(
        session_id=started.session.id,
        strategy=started.strategy.value,
        storage_key=started.session.storage_key,
        upload_url=started.upload_url.url if started.upload_url else None,
        part_size=started.part_size,
        parts_count=started.parts_count,
        expires_at=started.upload_url.expires_at if started.upload_url else None,
    )


@router.get("/part-url", response_model=PartUrlResponse)
async def get_part_url(
    session_id: str = Query(...),
    part_number: int = Query(...),
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> PartUrlResponse:
    """Issue a signed URL for one part of a multipart upload."""
    upload_session_context.set(session_id)
    issued = await coordinator.get_part_url(session_id, part_number)
    return PartUrlResponse(part_number=issued.part_number, url=issued.url, expires_at=issued.expires_at)


@router.post("/part-urls", response_model=PartUrlsResponse)
async def get_part_urls(
    request: PartUrlsRequest = Body(...),
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> PartUrlsResponse:
    """Issue signed URLs for several parts (all parts when none are listed)."""
    upload_session_context.set(request.session_id)
    issued = await coordinator.get_part_urls(request.session_id, request.part_numbers)
    return PartUrlsResponse(
        session_id=request.session_id,
        urls=[
            PartUrlResponse(part_number=u.part_number, url=u.url, expires_at=u.expires_at)
            for u in issued
        ],
    )


@router.post("/complete-upload", response_model=SessionResponse)
async def complete_upload(
    request: CompleteUploadRequest = Body(...),
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> SessionResponse:
    """Finalize an upload once the client has sent every byte."""
    upload_session_context.set(request.session_id)
    parts = [p.to_part() for p in request.parts] if request.parts is not None else None
    session = await coordinator.complete_upload(request.session_id, parts)
    return SessionResponse(session=SessionView.from_session(session))


@router.post("/abort-upload", response_model=AbortUploadResponse)
async def abort_upload(
    request: AbortUploadRequest = Body(...),
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> AbortUploadResponse:
    """Abort an upload; repeating the call is acknowledged without change."""
    upload_session_context.set(request.session_id)
    result = await coordinator.abort_upload(request.session_id)
    return AbortUploadResponse(message=result.message, session=SessionView.from_session(result.session))


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> SessionResponse:
    session = await coordinator.get_session(session_id)
    return SessionResponse(session=SessionView.from_session(session))


@router.get("/sessions/{session_id}/download-url", response_model=DownloadUrlResponse)
async def get_download_url(
    session_id: str,
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> DownloadUrlResponse:
    """Issue a signed GET URL for a completed upload."""
    issued = await coordinator.get_download_url(session_id)
    return DownloadUrlResponse(url=issued.url, expires_at=issued.expires_at)


@router.delete("/sessions/{session_id}", response_model=DeleteUploadResponse)
async def delete_upload(
    session_id: str,
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> DeleteUploadResponse:
    """Delete an upload's stored object and its session, aborting an open multipart sequence."""
    upload_session_context.set(session_id)
    session = await coordinator.delete_upload(session_id)
    return DeleteUploadResponse(session_id=session.id, storage_key=session.storage_key)
