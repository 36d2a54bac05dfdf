from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

import httpx
from fastapi import HTTPException

from neweyes.config import settings
from neweyes.utils.time import utc_now_aware

logger = logging.getLogger(__name__)

NPC_IMAGES_BUCKET = "npc-images"
ITEM_IMAGES_BUCKET = "item-images"
EPISODE_ASSETS_BUCKET = "episode-assets"
RENDITIONS = ("portrait", "medium", "small", "thumb")
IMAGE_CONTENT_TYPES = {
    "image/webp": "webp",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


class StorageError(Exception):
    pass


class BlobStorage(Protocol):
    def put(self, bucket: str, path: str, data: bytes, *, content_type: str, upsert: bool = True) -> str: ...

    def delete(self, bucket: str, path: str) -> None: ...

    def public_url(self, bucket: str, path: str, *, version: str | None = None) -> str: ...


def _join_url(base: str, bucket: str, path: str, version: str | None) -> str:
    url = f"{base.rstrip('/')}/{bucket}/{path.lstrip('/')}"
    return f"{url}?v={version}" if version else url


def _check_path(path: str) -> str:
    cleaned = path.strip().lstrip("/")
    if not cleaned or ".." in cleaned.split("/"):
        raise StorageError(f"invalid object path: {path!r}")
    return cleaned


class LocalBlobStorage:
    """Objects on the local filesystem, served by the app under ``public_base_url``."""

    def __init__(self, root: str | Path, *, public_base_url: str = "/storage") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url

    def _target(self, bucket: str, path: str) -> Path:
        return self.root / bucket / _check_path(path)

    def put(self, bucket: str, path: str, data: bytes, *, content_type: str, upsert: bool = True) -> str:
        target = self._target(bucket, path)
        if target.exists() and not upsert:
            raise StorageError(f"object already exists: {bucket}/{path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("stored %s bytes at %s/%s (%s)", len(data), bucket, path, content_type)
        return path

    def delete(self, bucket: str, path: str) -> None:
        self._target(bucket, path).unlink(missing_ok=True)

    def public_url(self, bucket: str, path: str, *, version: str | None = None) -> str:
        return _join_url(self.public_base_url, bucket, path, version)


class HttpBlobStorage:
    """Objects in a hosted storage service speaking the ``/storage/v1/object`` REST API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        timeout_s: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout_s,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.api_key}", "apikey": self.api_key},
        )

    def put(self, bucket: str, path: str, data: bytes, *, content_type: str, upsert: bool = True) -> str:
        url = f"{self.api_url}/storage/v1/object/{bucket}/{_check_path(path)}"
        headers = {"Content-Type": content_type, "x-upsert": "true" if upsert else "false"}
        with self._client() as client:
            resp = client.post(url, content=data, headers=headers)
        if resp.status_code >= 400:
            raise StorageError(f"upload failed ({resp.status_code}): {resp.text}")
        return path

    def delete(self, bucket: str, path: str) -> None:
        url = f"{self.api_url}/storage/v1/object/{bucket}/{_check_path(path)}"
        with self._client() as client:
            resp = client.delete(url)
        if resp.status_code >= 400 and resp.status_code != 404:
            raise StorageError(f"delete failed ({resp.status_code}): {resp.text}")

    def public_url(self, bucket: str, path: str, *, version: str | None = None) -> str:
        return _join_url(f"{self.api_url}/storage/v1/object/public", bucket, path, version)


def rendition_path(entity_id: object, rendition: str, ext: str = "webp") -> str:
    if rendition not in RENDITIONS:
        raise StorageError(f"unknown rendition: {rendition}")
    return f"{entity_id}/{rendition}.{ext}"


def safe_file_name(name: str | None) -> str:
    base = Path(str(name or "")).name
    cleaned = _UNSAFE_NAME_CHARS.sub("-", base).strip("-.")
    return cleaned or "upload"


def episode_map_path(episode_id: object, file_name: str | None) -> str:
    ts = int(utc_now_aware().timestamp() * 1000)
    return f"episode-maps/{episode_id}/{ts}-{safe_file_name(file_name)}"


def validate_image_upload(content_type: str | None, data: bytes) -> str:
    ext = IMAGE_CONTENT_TYPES.get(str(content_type or "").lower())
    if ext is None:
        raise HTTPException(
            status_code=422,
            detail={"code": "INVALID_IMAGE_TYPE", "message": "Upload a webp, png, jpeg or gif image."},
        )
    if not data:
        raise HTTPException(status_code=422, detail={"code": "EMPTY_UPLOAD", "message": "Uploaded file is empty."})
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail={"code": "UPLOAD_TOO_LARGE", "message": "Upload exceeds 10 MB."})
    return ext


def put_object(storage: BlobStorage, bucket: str, path: str, data: bytes, *, content_type: str) -> str:
    try:
        return storage.put(bucket, path, data, content_type=content_type)
    except (StorageError, httpx.HTTPError, OSError) as exc:
        logger.error("blob upload failed bucket=%s path=%s: %s", bucket, path, exc)
        raise HTTPException(status_code=502, detail={"code": "STORAGE_ERROR", "message": str(exc)}) from exc


def build_storage() -> BlobStorage:
    if settings.storage_backend == "http":
        if not settings.storage_api_url:
            raise RuntimeError("STORAGE_API_URL is required when STORAGE_BACKEND=http")
        return HttpBlobStorage(settings.storage_api_url, settings.storage_api_key, timeout_s=settings.storage_timeout_s)
    return LocalBlobStorage(settings.storage_local_dir, public_base_url=settings.storage_public_base_url)


def get_storage() -> BlobStorage:
    return build_storage()
