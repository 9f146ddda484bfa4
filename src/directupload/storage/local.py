"""Local filesystem storage gateway.

Emulates a signed-URL object store for development: URLs point back at the
service's own ``/local-storage`` routes and carry an HMAC signature over the
method, path and expiry. Part and object tokens are MD5 hex digests; a
multipart object's token follows the S3 convention ``md5(part md5s)-N``.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import shutil
import time
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import quote, urlencode
from uuid import uuid4

from directupload.core.exceptions import IntegrityError, NotFoundError, ValidationError
from directupload.models.session import UploadPart
from directupload.storage.base import CompletedObject, ObjectInfo, StorageGateway

logger = logging.getLogger(__name__)

ROUTE_PREFIX = "/local-storage"


def object_path(key: str) -> str:
    return f"{ROUTE_PREFIX}/objects/{key}"


def part_path(multipart_id: str, part_number: int) -> str:
    return f"{ROUTE_PREFIX}/multipart/{multipart_id}/parts/{part_number}"


class LocalStorageGateway(StorageGateway):
    """Local filesystem storage gateway."""

    def __init__(self, base_path: str | Path, base_url: str, signing_key: str):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/")
        self._signing_key = signing_key.encode()

    @property
    def bucket_name(self) -> str:
        return str(self.base_path)

    # Signing

    def _signature(self, method: str, path: str, expires: int) -> str:
        message = f"{method.upper()}\n{path}\n{expires}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def sign_url(self, method: str, path: str, ttl: int) -> str:
        expires = int(time.time()) + ttl
        query = urlencode({"expires": expires, "signature": self._signature(method, path, expires)})
        return f"{self.base_url}{quote(path)}?{query}"

    def verify(self, method: str, path: str, expires: int, signature: str) -> bool:
        """Check a signed URL's signature and expiry."""
        if expires < int(time.time()):
            return False
        expected = self._signature(method, path, expires)
        return hmac.compare_digest(expected, signature)

    # Filesystem layout

    def _object_file(self, key: str) -> Path:
        if ".." in Path(key).parts or key.startswith("/"):
            raise ValidationError(f"Invalid storage key: {key}")
        return self.base_path / "objects" / key

    def _meta_file(self, key: str) -> Path:
        self._object_file(key)
        return self.base_path / "meta" / f"{key}.json"

    def _multipart_dir(self, multipart_id: str) -> Path:
        if not multipart_id.isalnum():
            raise ValidationError(f"Invalid multipart id: {multipart_id}")
        return self.base_path / "multipart" / multipart_id

    def _write_meta(self, key: str, integrity_token: str, size: int, content_type: Optional[str]) -> None:
        meta_file = self._meta_file(key)
        meta_file.parent.mkdir(parents=True, exist_ok=True)
        meta_file.write_text(
            json.dumps({"integrity_token": integrity_token, "size": size, "content_type": content_type})
        )

    # Writes arriving through signed URLs

    def _store_object(self, key: str, data: bytes, content_type: Optional[str]) -> str:
        target = self._object_file(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        token = hashlib.md5(data).hexdigest()
        self._write_meta(key, token, len(data), content_type)
        return token

    async def store_object(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Write a whole object and return its token."""
        return await asyncio.to_thread(self._store_object, key, data, content_type)

    def _store_part(self, multipart_id: str, part_number: int, data: bytes) -> str:
        upload_dir = self._multipart_dir(multipart_id)
        if not (upload_dir / "upload.json").exists():
            raise NotFoundError(f"Multipart upload {multipart_id} not found")
        (upload_dir / f"{part_number}.part").write_bytes(data)
        return hashlib.md5(data).hexdigest()

    async def store_part(self, multipart_id: str, part_number: int, data: bytes) -> str:
        """Write one part of an open multipart upload and return its token."""
        return await asyncio.to_thread(self._store_part, multipart_id, part_number, data)

    def object_file(self, key: str) -> Path:
        """Path of a stored object; NotFoundError if absent."""
        target = self._object_file(key)
        if not target.is_file():
            raise NotFoundError(f"Object not found: {key}")
        return target

    # Gateway contract

    async def issue_put_url(self, key: str, content_type: Optional[str], ttl: int) -> str:
        return self.sign_url("PUT", object_path(key), ttl)

    async def issue_part_url(self, key: str, multipart_id: str, part_number: int, ttl: int) -> str:
        return self.sign_url("PUT", part_path(multipart_id, part_number), ttl)

    def _open_multipart(self, key: str, content_type: Optional[str]) -> str:
        multipart_id = uuid4().hex
        upload_dir = self._multipart_dir(multipart_id)
        upload_dir.mkdir(parents=True)
        (upload_dir / "upload.json").write_text(json.dumps({"key": key, "content_type": content_type}))
        return multipart_id

    async def open_multipart(self, key: str, content_type: Optional[str]) -> str:
        self._object_file(key)
        multipart_id = await asyncio.to_thread(self._open_multipart, key, content_type)
        logger.info(
            "Opened local multipart upload",
            extra={"storage_key": key, "multipart_id": multipart_id},
        )
        return multipart_id

    def _complete_multipart(
        self, key: str, multipart_id: str, parts: Sequence[UploadPart]
    ) -> CompletedObject:
        upload_dir = self._multipart_dir(multipart_id)
        manifest_file = upload_dir / "upload.json"
        if not manifest_file.exists():
            raise IntegrityError(f"Multipart upload {multipart_id} does not exist")
        manifest = json.loads(manifest_file.read_text())
        if manifest["key"] != key:
            raise IntegrityError(f"Multipart upload {multipart_id} belongs to another key")

        digests = []
        for part in parts:
            part_file = upload_dir / f"{part.part_number}.part"
            if not part_file.exists():
                raise IntegrityError(f"Part {part.part_number} was never uploaded")
            digest = hashlib.md5(part_file.read_bytes()).hexdigest()
            if digest != part.integrity_token:
                raise IntegrityError(f"Part {part.part_number} token does not match stored content")
            digests.append(digest)

        target = self._object_file(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        size = 0
        with open(target, "wb") as out:
            for part in parts:
                with open(upload_dir / f"{part.part_number}.part", "rb") as src:
                    while chunk := src.read(65536):  # 64KB chunks
                        out.write(chunk)
                        size += len(chunk)

        combined = hashlib.md5(b"".join(bytes.fromhex(d) for d in digests)).hexdigest()
        token = f"{combined}-{len(parts)}"
        self._write_meta(key, token, size, manifest.get("content_type"))
        shutil.rmtree(upload_dir)
        return CompletedObject(integrity_token=token, size=size)

    async def complete_multipart(
        self, key: str, multipart_id: str, parts: Sequence[UploadPart]
    ) -> CompletedObject:
        return await asyncio.to_thread(self._complete_multipart, key, multipart_id, parts)

    async def abort_multipart(self, key: str, multipart_id: str) -> None:
        upload_dir = self._multipart_dir(multipart_id)
        await asyncio.to_thread(shutil.rmtree, upload_dir, True)
        logger.info(
            "Aborted local multipart upload",
            extra={"storage_key": key, "multipart_id": multipart_id},
        )

    def _head_object(self, key: str) -> ObjectInfo:
        target = self.object_file(key)
        meta_file = self._meta_file(key)
        if meta_file.exists():
            meta = json.loads(meta_file.read_text())
            return ObjectInfo(integrity_token=meta["integrity_token"], size=meta["size"])
        return ObjectInfo(
            integrity_token=hashlib.md5(target.read_bytes()).hexdigest(),
            size=target.stat().st_size,
        )

    async def head_object(self, key: str) -> ObjectInfo:
        return await asyncio.to_thread(self._head_object, key)

    def _delete_object(self, key: str) -> None:
        self._object_file(key).unlink(missing_ok=True)
        self._meta_file(key).unlink(missing_ok=True)

    async def delete_object(self, key: str) -> None:
        await asyncio.to_thread(self._delete_object, key)
        logger.info("Deleted local object", extra={"storage_key": key})

    async def issue_get_url(self, key: str, ttl: int) -> str:
        return self.sign_url("GET", object_path(key), ttl)

    def content_type(self, key: str) -> Optional[str]:
        meta_file = self._meta_file(key)
        if not meta_file.exists():
            return None
        return json.loads(meta_file.read_text()).get("content_type")

    def get_backend_name(self) -> str:
        return "local"
