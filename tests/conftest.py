"""Pytest configuration and shared fixtures."""

import hashlib
from typing import Optional, Sequence
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from directupload.api.dependencies import get_coordinator
from directupload.core.config import MB, UploadConfig
from directupload.core.exceptions import IntegrityError, NotFoundError
from directupload.main import app
from directupload.models.session import UploadPart
from directupload.services.coordinator import UploadCoordinator
from directupload.storage.base import CompletedObject, ObjectInfo, StorageGateway
from directupload.storage.factory import get_storage_gateway
from directupload.storage.local import LocalStorageGateway
from directupload.storage.session_store import InMemorySessionStore


class FakeStorageGateway(StorageGateway):
    """In-memory storage that records every call the coordinator makes."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.uploads: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_complete: Optional[Exception] = None

    @property
    def bucket_name(self) -> str:
        return "test-bucket"

    # Test helpers standing in for PUTs to signed URLs

    def put_object(self, key: str, data: bytes) -> str:
        self.objects[key] = data
        return hashlib.md5(data).hexdigest()

    def put_part(self, multipart_id: str, part_number: int, data: bytes) -> str:
        self.uploads[multipart_id]["parts"][part_number] = data
        return hashlib.md5(data).hexdigest()

    # Gateway contract

    async def issue_put_url(self, key: str, content_type: Optional[str], ttl: int) -> str:
        self.calls.append(("issue_put_url", key, content_type, ttl))
        return f"https://storage.test/{key}?op=put"

    async def issue_part_url(self, key: str, multipart_id: str, part_number: int, ttl: int) -> str:
        self.calls.append(("issue_part_url", key, multipart_id, part_number, ttl))
        return f"https://storage.test/{key}?uploadId={multipart_id}&partNumber={part_number}"

    async def open_multipart(self, key: str, content_type: Optional[str]) -> str:
        multipart_id = uuid4().hex
        self.uploads[multipart_id] = {"key": key, "parts": {}}
        self.calls.append(("open_multipart", key, content_type))
        return multipart_id

    async def complete_multipart(
        self, key: str, multipart_id: str, parts: Sequence[UploadPart]
    ) -> CompletedObject:
        self.calls.append(("complete_multipart", key, multipart_id, tuple(parts)))
        if self.fail_complete is not None:
            raise self.fail_complete
        upload = self.uploads.get(multipart_id)
        if upload is None:
            raise IntegrityError("NoSuchUpload")
        digests = []
        for part in parts:
            data = upload["parts"].get(part.part_number)
            if data is None or hashlib.md5(data).hexdigest() != part.integrity_token:
                raise IntegrityError(f"InvalidPart {part.part_number}")
            digests.append(hashlib.md5(data).digest())
        self.objects[key] = b"".join(upload["parts"][p.part_number] for p in parts)
        del self.uploads[multipart_id]
        token = f"{hashlib.md5(b''.join(digests)).hexdigest()}-{len(parts)}"
        return CompletedObject(integrity_token=token)

    async def abort_multipart(self, key: str, multipart_id: str) -> None:
        self.calls.append(("abort_multipart", key, multipart_id))
        self.uploads.pop(multipart_id, None)

    async def head_object(self, key: str) -> ObjectInfo:
        self.calls.append(("head_object", key))
        if key not in self.objects:
            raise NotFoundError(f"Object not found: {key}")
        data = self.objects[key]
        return ObjectInfo(integrity_token=hashlib.md5(data).hexdigest(), size=len(data))

    async def delete_object(self, key: str) -> None:
        self.calls.append(("delete_object", key))
        self.objects.pop(key, None)

    async def issue_get_url(self, key: str, ttl: int) -> str:
        self.calls.append(("issue_get_url", key, ttl))
        return f"https://storage.test/{key}?op=get"

    def get_backend_name(self) -> str:
        return "fake"

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def upload_config():
    """10 MB threshold and part size, three parts in flight."""
    return UploadConfig(
        single_put_threshold=10 * MB,
        part_size=10 * MB,
        max_concurrent_parts=3,
        url_ttl=900,
    )


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def fake_gateway():
    return FakeStorageGateway()


@pytest.fixture
def coordinator(session_store, fake_gateway, upload_config):
    return UploadCoordinator(
        store=session_store,
        gateway=fake_gateway,
        config=upload_config,
        key_prefix="uploads/",
    )


@pytest.fixture
def client(coordinator):
    """Test client wired to the fake-storage coordinator."""
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def local_gateway(tmp_path):
    return LocalStorageGateway(
        base_path=tmp_path / "storage",
        base_url="http://testserver",
        signing_key="test-signing-key",
    )


@pytest.fixture
def local_coordinator(session_store, local_gateway):
    """Coordinator over real local storage with small sizes: 8 KB threshold, 4 KB parts."""
    config = UploadConfig(single_put_threshold=8 * 1024, part_size=4 * 1024, max_concurrent_parts=3)
    return UploadCoordinator(store=session_store, gateway=local_gateway, config=config, key_prefix="uploads/")


@pytest.fixture
def local_app(local_gateway, local_coordinator):
    """The application serving both the upload API and the signed local storage routes."""
    app.dependency_overrides[get_storage_gateway] = lambda: local_gateway
    app.dependency_overrides[get_coordinator] = lambda: local_coordinator
    try:
        yield app
    finally:
        app.dependency_overrides.clear()
