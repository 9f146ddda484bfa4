"""End-to-end tests for the client uploader against the service with local storage."""

import asyncio
import hashlib

import httpx
import pytest

from directupload.client.api_client import CoordinatorClient
from directupload.client.uploader import ClientUploadStatus, FileUploader
from directupload.core.config import UploadConfig
from directupload.core.exceptions import StorageError, TransportError

BASE_URL = "http://testserver"
CONFIG = UploadConfig(single_put_threshold=8 * 1024, part_size=4 * 1024, max_concurrent_parts=3)


class ServiceTransport(httpx.AsyncBaseTransport):
    """Routes requests into the ASGI app, optionally failing or stalling part PUTs."""

    def __init__(self, app, fail_parts=(), stall_parts=(), fail_objects=False, fail_completions=0):
        self._inner = httpx.ASGITransport(app=app)
        self.fail_completions = fail_completions
        self.fail_parts = set(fail_parts)
        self.stall_parts = set(stall_parts)
        self.fail_objects = fail_objects
        self.requests: list[tuple[str, str]] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        if request.method == "PUT" and "/parts/" in path:
            part_number = int(path.rsplit("/", 1)[1])
            if part_number in self.fail_parts:
                return httpx.Response(500, text="storage unavailable")
            if part_number in self.stall_parts:
                await asyncio.sleep(30)
        if request.method == "PUT" and "/objects/" in path and self.fail_objects:
            return httpx.Response(403, text="signature expired")
        if path.endswith("/complete-upload") and self.fail_completions:
            self.fail_completions -= 1
            return httpx.Response(502, json={"error": "storage_error", "detail": "backend down"})
        return await self._inner.handle_async_request(request)

    def called(self, path_suffix: str) -> bool:
        return any(path.endswith(path_suffix) for _, path in self.requests)


def write_file(tmp_path, name, size):
    path = tmp_path / name
    path.write_bytes(bytes(i % 251 for i in range(size)))
    return path


def make_uploader(transport, **kwargs):
    http = httpx.AsyncClient(transport=transport, base_url=BASE_URL)
    api = CoordinatorClient(BASE_URL, http_client=http)
    return FileUploader(api, http, config=CONFIG, **kwargs), http


@pytest.mark.asyncio
async def test_single_upload(local_app, local_gateway, tmp_path):
    path = write_file(tmp_path, "notes.txt", 3 * 1024)
    transport = ServiceTransport(local_app)
    statuses = []
    uploader, http = make_uploader(transport, on_status=statuses.append)

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42", description="notes")

        assert result.status == ClientUploadStatus.COMPLETE
        assert result.session.strategy == "single"
        assert result.session.final_size == 3 * 1024
        assert result.session.final_integrity_token == hashlib.md5(path.read_bytes()).hexdigest()
        assert result.session.content_type == "text/plain"
        assert statuses == [
            ClientUploadStatus.STARTING,
            ClientUploadStatus.UPLOADING,
            ClientUploadStatus.COMPLETING,
            ClientUploadStatus.COMPLETE,
        ]

        response = await http.get(f"/api/v1/upload/sessions/{result.session_id}/download-url")
        download = await http.get(response.json()["url"])
        assert download.content == path.read_bytes()

    assert uploader.progress == 100.0
    assert not transport.called("/part-url")


@pytest.mark.asyncio
@pytest.mark.parametrize("prefetch", [False, True])
async def test_multipart_upload(local_app, local_gateway, tmp_path, prefetch):
    """Test a 10 KB file in 4 KB parts lands intact as a three-part object."""
    path = write_file(tmp_path, "video.mp4", 10 * 1024)
    transport = ServiceTransport(local_app)
    progress = []
    uploader, http = make_uploader(transport, prefetch_part_urls=prefetch, on_progress=progress.append)

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42")

    assert result.status == ClientUploadStatus.COMPLETE
    session = result.session
    assert session.strategy == "multipart"
    assert session.parts_count == 3
    assert [p.part_number for p in session.parts] == [1, 2, 3]
    assert session.final_size == 10 * 1024
    assert session.final_integrity_token.endswith("-3")
    assert local_gateway.object_file(session.storage_key).read_bytes() == path.read_bytes()
    assert progress == sorted(progress)
    assert progress[-1] == 100.0
    assert transport.called("/part-urls") == prefetch
    assert transport.called("/part-url") != prefetch


@pytest.mark.asyncio
async def test_part_failure_aborts_session(local_app, local_coordinator, local_gateway, tmp_path):
    """Test a failing part aborts the session and complete is never called."""
    path = write_file(tmp_path, "video.mp4", 20 * 1024)
    transport = ServiceTransport(local_app, fail_parts={2})
    uploader, http = make_uploader(transport)

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42")

    assert result.status == ClientUploadStatus.FAILED
    assert isinstance(result.error, TransportError)
    assert result.error.part_number == 2
    assert result.session.status == "aborted"
    assert transport.called("/abort-upload")
    assert not transport.called("/complete-upload")
    assert not any((local_gateway.base_path / "multipart").iterdir())
    session = await local_coordinator.get_session(result.session_id)
    assert session.multipart_id is None


@pytest.mark.asyncio
async def test_cancel_aborts_session(local_app, tmp_path):
    path = write_file(tmp_path, "video.mp4", 16 * 1024)
    transport = ServiceTransport(local_app, stall_parts={2, 3, 4})
    progress = []

    def on_progress(value):
        progress.append(value)
        if value > 0:
            uploader.cancel()

    uploader, http = make_uploader(transport, on_progress=on_progress)

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42")

    assert result.status == ClientUploadStatus.ABORTED
    assert result.session.status == "aborted"
    assert progress[0] == 25.0
    assert progress[-1] == 0.0
    assert uploader.progress == 0.0
    assert not transport.called("/complete-upload")


@pytest.mark.asyncio
async def test_single_put_failure_aborts_session(local_app, tmp_path):
    path = write_file(tmp_path, "notes.txt", 1024)
    transport = ServiceTransport(local_app, fail_objects=True)
    uploader, http = make_uploader(transport)

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42")

    assert result.status == ClientUploadStatus.FAILED
    assert result.error.status_code == 403
    assert result.session.status == "aborted"
    assert not transport.called("/complete-upload")


@pytest.mark.asyncio
async def test_start_failure(local_app, tmp_path):
    path = write_file(tmp_path, "notes.txt", 10)
    transport = ServiceTransport(local_app)
    uploader, http = make_uploader(transport)

    async with http:
        result = await uploader.upload(path, resource_name="  ")

    assert result.status == ClientUploadStatus.FAILED
    assert result.session_id is None
    assert not transport.called("/abort-upload")


@pytest.mark.asyncio
async def test_coordinator_unreachable(tmp_path):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    path = write_file(tmp_path, "notes.txt", 10)
    uploader, http = make_uploader(httpx.MockTransport(refuse))

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42")

    assert result.status == ClientUploadStatus.FAILED
    assert isinstance(result.error, TransportError)


@pytest.mark.asyncio
async def test_completion_retried_once(local_app, local_gateway, tmp_path):
    path = write_file(tmp_path, "video.mp4", 10 * 1024)
    transport = ServiceTransport(local_app, fail_completions=1)
    uploader, http = make_uploader(transport, complete_retry_delay=0)

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42")

    assert result.status == ClientUploadStatus.COMPLETE
    assert sum(p.endswith("/complete-upload") for _, p in transport.requests) == 2
    assert not transport.called("/abort-upload")
    assert local_gateway.object_file(result.session.storage_key).read_bytes() == path.read_bytes()


@pytest.mark.asyncio
async def test_rejected_completion_aborts_session(local_app, local_coordinator, local_gateway, tmp_path):
    """Test a completion that keeps failing releases the multipart sequence."""
    path = write_file(tmp_path, "video.mp4", 10 * 1024)
    transport = ServiceTransport(local_app, fail_completions=2)
    statuses = []
    uploader, http = make_uploader(transport, complete_retry_delay=0, on_status=statuses.append)

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42")

    assert result.status == ClientUploadStatus.FAILED
    assert isinstance(result.error, StorageError)
    assert result.session.status == "aborted"
    assert statuses[-2:] == [ClientUploadStatus.COMPLETING, ClientUploadStatus.FAILED]
    assert sum(p.endswith("/complete-upload") for _, p in transport.requests) == 2
    assert not any((local_gateway.base_path / "multipart").iterdir())
    session = await local_coordinator.get_session(result.session_id)
    assert session.multipart_id is None


@pytest.mark.asyncio
async def test_completion_lost_response_recovers(local_app, local_coordinator, tmp_path):
    """Test a retry answered 409 after the first attempt completed server-side reports success."""
    path = write_file(tmp_path, "notes.txt", 1024)
    transport = ServiceTransport(local_app)
    uploader, http = make_uploader(transport, complete_retry_delay=0)
    complete = uploader.api.complete_upload

    async def complete_then_drop(session_id, parts=None):
        await complete(session_id, parts)
        raise TransportError("connection reset")

    uploader.api.complete_upload = complete_then_drop

    async with http:
        result = await uploader.upload(path, resource_name="lecture-42")

    assert result.status == ClientUploadStatus.COMPLETE
    assert result.session.status == "complete"
    assert not transport.called("/abort-upload")
