"""Unit tests for the S3 storage gateway."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from directupload.core.exceptions import IntegrityError, NotFoundError, StorageError
from directupload.models.session import UploadPart
from directupload.storage.s3 import S3StorageGateway


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


@pytest.fixture
def s3_client():
    """Mock boto3 S3 client."""
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://test-bucket.s3.amazonaws.com/signed"
    return client


@pytest.fixture
def gateway(s3_client):
    return S3StorageGateway(bucket_name="test-bucket", client=s3_client)


def test_requires_bucket(s3_client):
    with pytest.raises(ValueError):
        S3StorageGateway(bucket_name="", client=s3_client)


@pytest.mark.asyncio
async def test_issue_put_url(gateway, s3_client):
    url = await gateway.issue_put_url("uploads/a.pdf", "application/pdf", 900)

    assert url == "https://test-bucket.s3.amazonaws.com/signed"
    s3_client.generate_presigned_url.assert_called_once_with(
        "put_object",
        Params={"Bucket": "test-bucket", "Key": "uploads/a.pdf", "ContentType": "application/pdf"},
        ExpiresIn=900,
    )


@pytest.mark.asyncio
async def test_issue_part_url(gateway, s3_client):
    await gateway.issue_part_url("uploads/a.bin", "mp-1", 2, 900)

    s3_client.generate_presigned_url.assert_called_once_with(
        "upload_part",
        Params={"Bucket": "test-bucket", "Key": "uploads/a.bin", "UploadId": "mp-1", "PartNumber": 2},
        ExpiresIn=900,
    )


@pytest.mark.asyncio
async def test_open_multipart(gateway, s3_client):
    s3_client.create_multipart_upload.return_value = {"UploadId": "mp-1"}

    upload_id = await gateway.open_multipart("uploads/a.bin", "video/mp4")

    assert upload_id == "mp-1"
    s3_client.create_multipart_upload.assert_called_once_with(
        Bucket="test-bucket", Key="uploads/a.bin", ContentType="video/mp4"
    )


@pytest.mark.asyncio
async def test_open_multipart_failure(gateway, s3_client):
    s3_client.create_multipart_upload.side_effect = client_error("AccessDenied", "CreateMultipartUpload")

    with pytest.raises(StorageError):
        await gateway.open_multipart("uploads/a.bin", None)


@pytest.mark.asyncio
async def test_complete_multipart(gateway, s3_client):
    s3_client.complete_multipart_upload.return_value = {"ETag": '"abc123-2"'}
    parts = [UploadPart(1, "aaa"), UploadPart(2, "bbb")]

    completed = await gateway.complete_multipart("uploads/a.bin", "mp-1", parts)

    assert completed.integrity_token == "abc123-2"
    s3_client.complete_multipart_upload.assert_called_once_with(
        Bucket="test-bucket",
        Key="uploads/a.bin",
        UploadId="mp-1",
        MultipartUpload={
            "Parts": [{"PartNumber": 1, "ETag": '"aaa"'}, {"PartNumber": 2, "ETag": '"bbb"'}]
        },
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["InvalidPart", "InvalidPartOrder", "EntityTooSmall", "NoSuchUpload"])
async def test_complete_multipart_rejected(gateway, s3_client, code):
    s3_client.complete_multipart_upload.side_effect = client_error(code, "CompleteMultipartUpload")

    with pytest.raises(IntegrityError, match=code):
        await gateway.complete_multipart("uploads/a.bin", "mp-1", [UploadPart(1, "aaa")])


@pytest.mark.asyncio
async def test_complete_multipart_service_error(gateway, s3_client):
    s3_client.complete_multipart_upload.side_effect = client_error("InternalError", "CompleteMultipartUpload")

    with pytest.raises(StorageError):
        await gateway.complete_multipart("uploads/a.bin", "mp-1", [UploadPart(1, "aaa")])


@pytest.mark.asyncio
async def test_abort_missing_upload_is_ignored(gateway, s3_client):
    s3_client.abort_multipart_upload.side_effect = client_error("NoSuchUpload", "AbortMultipartUpload")

    await gateway.abort_multipart("uploads/a.bin", "mp-1")


@pytest.mark.asyncio
async def test_abort_failure(gateway, s3_client):
    s3_client.abort_multipart_upload.side_effect = client_error("AccessDenied", "AbortMultipartUpload")

    with pytest.raises(StorageError):
        await gateway.abort_multipart("uploads/a.bin", "mp-1")


@pytest.mark.asyncio
async def test_head_object(gateway, s3_client):
    s3_client.head_object.return_value = {"ETag": '"d41d8cd9"', "ContentLength": 3145728}

    info = await gateway.head_object("uploads/a.pdf")

    assert info.integrity_token == "d41d8cd9"
    assert info.size == 3145728


@pytest.mark.asyncio
async def test_head_missing_object(gateway, s3_client):
    s3_client.head_object.side_effect = client_error("404", "HeadObject")

    with pytest.raises(NotFoundError):
        await gateway.head_object("uploads/missing.pdf")


@pytest.mark.asyncio
async def test_issue_get_url(gateway, s3_client):
    await gateway.issue_get_url("uploads/a.pdf", 60)

    s3_client.generate_presigned_url.assert_called_once_with(
        "get_object", Params={"Bucket": "test-bucket", "Key": "uploads/a.pdf"}, ExpiresIn=60
    )


@pytest.mark.asyncio
async def test_delete_object(gateway, s3_client):
    await gateway.delete_object("uploads/a.pdf")

    s3_client.delete_object.assert_called_once_with(Bucket="test-bucket", Key="uploads/a.pdf")


@pytest.mark.asyncio
async def test_delete_object_failure(gateway, s3_client):
    s3_client.delete_object.side_effect = client_error("AccessDenied", "DeleteObject")

    with pytest.raises(StorageError):
        await gateway.delete_object("uploads/a.pdf")
