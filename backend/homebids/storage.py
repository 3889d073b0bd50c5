"""Blob store for message attachments (URL-returning put/get/list, plus delete)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .config import settings
from .domain_errors import NotFound, StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)

_SAFE_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


@dataclass(frozen=True)
class BlobEntry:
    path: str
    size: int
    url: str


class BlobStore(Protocol):
    def put(self, path: str, data: bytes, content_type: str) -> str: ...

    def get(self, path: str) -> bytes: ...

    def list(self, prefix: str) -> list[BlobEntry]: ...

    def delete(self, path: str) -> None: ...

    def url_for(self, path: str) -> str: ...


def sanitize_blob_path(path: str) -> str:
    """Normalize a relative blob path and reject traversal."""
    if not path:
        raise ValidationError("Invalid blob path", code="INVALID_BLOB_PATH")

    # Reject traversal and backslashes regardless of OS.
    if "\\" in path or path.startswith("/"):
        raise ValidationError("Invalid blob path", code="INVALID_BLOB_PATH")

    segments = path.split("/")
    for segment in segments:
        if segment in ("", ".", "..") or not _SAFE_SEGMENT_RE.match(segment):
            raise ValidationError("Invalid blob path", code="INVALID_BLOB_PATH")
    return "/".join(segments)


class LocalBlobStore:
    """Filesystem-backed blob store; files are served through the attachments router."""

    def __init__(self, root: str | Path | None = None, base_url: str | None = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    def _resolve(self, path: str) -> Path:
        return self.root / sanitize_blob_path(path)

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{sanitize_blob_path(path)}"

    def put(self, path: str, data: bytes, content_type: str) -> str:
        dest_path = self._resolve(path)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with dest_path.open("xb") as out:
                out.write(data)
        except FileExistsError:
            raise ValidationError("Blob already exists", code="BLOB_EXISTS", details={"path": path})
        except OSError as exc:
            # Ensure partial file is removed.
            dest_path.unlink(missing_ok=True)
            logger.warning("blob.put failed path=%s error=%s", path, exc)
            raise StoreUnavailable("Failed to store file") from exc
        logger.debug("blob.put path=%s size=%s type=%s", path, len(data), content_type)
        return self.url_for(path)

    def get(self, path: str) -> bytes:
        file_path = self._resolve(path)
        if not file_path.is_file():
            raise NotFound("File not found", code="BLOB_NOT_FOUND")
        try:
            return file_path.read_bytes()
        except OSError as exc:
            raise StoreUnavailable("Failed to read file") from exc

    def delete(self, path: str) -> None:
        file_path = self._resolve(path)
        try:
            file_path.unlink(missing_ok=True)
        except OSError as exc:
            raise StoreUnavailable("Failed to delete file") from exc
        logger.debug("blob.delete path=%s", path)

    def list(self, prefix: str) -> list[BlobEntry]:
        base = self._resolve(prefix) if prefix else self.root
        if not base.is_dir():
            return []
        entries: list[BlobEntry] = []
        for file_path in sorted(p for p in base.rglob("*") if p.is_file()):
            rel = file_path.relative_to(self.root).as_posix()
            entries.append(BlobEntry(path=rel, size=file_path.stat().st_size, url=self.url_for(rel)))
        return entries


_blob_store: LocalBlobStore | None = None


def get_blob_store() -> BlobStore:
    """FastAPI dependency returning the process-wide blob store."""
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore()
    return _blob_store
