"""Client side of the direct upload protocol.

Plans part layouts, drives bounded-concurrency part PUTs against signed URLs
and hands the finished part list back to the coordinator.
"""

from directupload.client.api_client import CoordinatorClient
from directupload.client.chunking import PartRange, plan_parts
from directupload.client.orchestrator import (
    ChunkedUploadOrchestrator,
    CompletedPart,
    MultipartOutcome,
    PrefetchedUrls,
    TransferStatus,
)
from directupload.client.uploader import ClientUploadStatus, FileUploader, UploadResult

__all__ = [
    "ChunkedUploadOrchestrator",
    "ClientUploadStatus",
    "CompletedPart",
    "CoordinatorClient",
    "FileUploader",
    "MultipartOutcome",
    "PartRange",
    "PrefetchedUrls",
    "TransferStatus",
    "UploadResult",
    "plan_parts",
]
