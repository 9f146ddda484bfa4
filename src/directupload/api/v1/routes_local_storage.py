"""Signed-URL endpoints backing the local storage gateway."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import FileResponse

from directupload.storage.base import StorageGateway
from directupload.storage.factory import get_storage_gateway
from directupload.storage.local import ROUTE_PREFIX, LocalStorageGateway, object_path, part_path

router = APIRouter(prefix=ROUTE_PREFIX, tags=["local-storage"])
logger = logging.getLogger(__name__)


def get_local_gateway(gateway: StorageGateway = Depends(get_storage_gateway)) -> LocalStorageGateway:
    if not isinstance(gateway, LocalStorageGateway):
        raise HTTPException(status_code=404, detail="Local storage is not enabled")
    return gateway


def _check_signature(
    gateway: LocalStorageGateway, method: str, path: str, expires: int, signature: str
) -> None:
    if not gateway.verify(method, path, expires, signature):
        logger.warning("Rejected local storage request", extra={"method": method, "path": path})
        raise HTTPException(status_code=403, detail="Signature mismatch or URL expired")


@router.put("/objects/{key:path}")
async def put_object(
    key: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
    gateway: LocalStorageGateway = Depends(get_local_gateway),
) -> Response:
    """Accept a whole-object PUT."""
    _check_signature(gateway, "PUT", object_path(key), expires, signature)
    body = await request.body()
    token = await gateway.store_object(key, body, request.headers.get("content-type"))
    return Response(status_code=200, headers={"ETag": f'"{token}"'})


@router.put("/multipart/{multipart_id}/parts/{part_number}")
async def put_part(
    multipart_id: str,
    part_number: int,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
    gateway: LocalStorageGateway = Depends(get_local_gateway),
) -> Response:
    """Accept one multipart part."""
    _check_signature(gateway, "PUT", part_path(multipart_id, part_number), expires, signature)
    body = await request.body()
    token = await gateway.store_part(multipart_id, part_number, body)
    return Response(status_code=200, headers={"ETag": f'"{token}"'})


@router.get("/objects/{key:path}")
async def get_object(
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    gateway: LocalStorageGateway = Depends(get_local_gateway),
) -> FileResponse:
    """Serve a stored object."""
    _check_signature(gateway, "GET", object_path(key), expires, signature)
    path = gateway.object_file(key)
    return FileResponse(path, media_type=gateway.content_type(key) or "application/octet-stream")
