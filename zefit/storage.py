"""
Local filesystem object store.

Objects live under ``<root>/<bucket>/<path>`` and are served from
``<base_url>/<bucket>/<path>``; a stored object keeps its URL for as long as
it exists.
"""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from werkzeug.utils import secure_filename

from zefit import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object cannot be written."""


def safe_object_name(filename: str, *, now: Optional[datetime] = None) -> str:
    """``<millis>-<secure filename>``; whitespace runs become underscores."""
    if now is None:
        now = datetime.now()
    safe = secure_filename(filename or "") or "upload"
    return f"{int(now.timestamp() * 1000)}-{safe}"


class LocalObjectStore:
    def __init__(self, root: str | Path, base_url: str = "/storage"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _target(self, bucket: str, path: str) -> Path:
        target = (self.root / bucket / path).resolve()
        bucket_root = (self.root / bucket).resolve()
        if bucket_root not in target.parents:
            raise StorageError(f"Invalid object path {path!r}")
        return target

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> str:
        """Write ``data`` and return the object's public URL."""
        target = self._target(bucket, path)
        if target.exists() and not upsert:
            raise StorageError(f"Object {bucket}/{path} already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            logger.error("Upload of %s/%s (%s) failed: %s", bucket, path, content_type, exc)
            raise StorageError(f"Upload failed: {exc}") from exc
        logger.info("Stored %s/%s (%d bytes, %s)", bucket, path, len(data), content_type)
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/{bucket}/{path}"

    def read(self, bucket: str, path: str) -> bytes:
        return self._target(bucket, path).read_bytes()


def default_store() -> LocalObjectStore:
    return LocalObjectStore(settings.STORAGE_ROOT, settings.STORAGE_BASE_URL)
