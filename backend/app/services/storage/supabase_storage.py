from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

import requests

from app.core.errors import UnconfiguredError
from app.core.settings import settings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredArtifact:
    url: str
    path: str


def extension_for(mime_type: str | None) -> str:
    raw = str(mime_type or "").strip().lower()
    if "/" not in raw:
        return "png"
    ext = raw.split("/", 1)[1].split(";", 1)[0].strip()
    return ext or "png"


def artifact_path(user_id: str, generation_id: str, mime_type: str | None) -> str:
    return f"{user_id}/{generation_id}.{extension_for(mime_type)}"


class SupabaseStorage:
    def __init__(self, *, supabase_url: str, service_key: str, bucket: str, timeout_s: float = 30.0) -> None:
        self._base = (supabase_url or "").strip().rstrip("/")
        self._key = (service_key or "").strip()
        self._bucket = (bucket or "").strip()
        self._timeout_s = timeout_s

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._key,
            "authorization": f"Bearer {self._key}",
        }

    def public_url(self, path: str) -> str:
        return f"{self._base}/storage/v1/object/public/{self._bucket}/{quote(path)}"

    def put(self, data: bytes, content_type: str, path: str) -> StoredArtifact:
        """Upload ``data`` to ``path``, overwriting any existing object."""
        headers = self._headers()
        headers["content-type"] = content_type or "application/octet-stream"
        headers["x-upsert"] = "true"
        try:
            resp = requests.post(
                f"{self._base}/storage/v1/object/{self._bucket}/{quote(path)}",
                headers=headers,
                data=data,
                timeout=self._timeout_s,
            )
        except requests.RequestException as e:
            raise StorageError(f"Storage upload failed: {e}")
        if resp.status_code >= 400:
            raise StorageError(f"Storage upload failed ({resp.status_code}): {resp.text[:300]}")
        logger.info("storage.put.ok bucket=%s path=%s bytes=%s", self._bucket, path, len(data or b""))
        return StoredArtifact(url=self.public_url(path), path=path)

    def delete(self, path: str) -> None:
        try:
            resp = requests.delete(
                f"{self._base}/storage/v1/object/{self._bucket}",
                headers=self._headers(),
                json={"prefixes": [path]},
                timeout=self._timeout_s,
            )
        except requests.RequestException as e:
            raise StorageError(f"Storage delete failed: {e}")
        if resp.status_code == 404:
            return
        if resp.status_code >= 400:
            raise StorageError(f"Storage delete failed ({resp.status_code}): {resp.text[:300]}")
        logger.info("storage.delete.ok bucket=%s path=%s", self._bucket, path)


def get_storage() -> SupabaseStorage:
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise UnconfiguredError("Artifact storage is not configured")
    return SupabaseStorage(
        supabase_url=settings.supabase_url,
        service_key=settings.supabase_service_role_key,
        bucket=settings.supabase_storage_bucket,
    )
