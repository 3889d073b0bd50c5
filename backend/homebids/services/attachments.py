"""Message attachment validation and upload."""
from __future__ import annotations

import logging
import mimetypes
import re
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from ..config import settings
from ..domain_errors import StoreUnavailable, ValidationError
from ..storage import BlobStore

logger = logging.getLogger(__name__)

ATTACHMENT_PREFIX = "message-attachments"

_SAFE_EXT_RE = re.compile(r"^[A-Za-z0-9]{1,16}$")


class AttachmentMeta(Protocol):
    file_name: str
    size: int
    content_type: str


@dataclass(frozen=True)
class AttachmentUpload:
    """File received with a send request."""

    file_name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StoredAttachment:
    file_name: str
    file_size: int
    file_type: str
    file_url: str
    storage_path: str


@dataclass(frozen=True)
class FailedAttachment:
    file_name: str
    reason: str


def validate_attachment(
    file: AttachmentMeta,
    *,
    max_size: int | None = None,
    allowed_types: Sequence[str] | None = None,
) -> None:
    max_size = settings.MAX_ATTACHMENT_SIZE if max_size is None else max_size
    allowed_types = settings.allowed_attachment_types_list if allowed_types is None else allowed_types

    if not file.file_name:
        raise ValidationError("Filename is required", code="ATTACHMENT_NAME_REQUIRED")
    if file.size > max_size:
        raise ValidationError(
            f"File too large. Max size: {max_size} bytes",
            code="ATTACHMENT_TOO_LARGE",
            details={"file_name": file.file_name, "size": file.size, "max_size": max_size},
        )
    if (file.content_type or "").lower() not in allowed_types:
        raise ValidationError(
            "File type not allowed",
            code="ATTACHMENT_TYPE_NOT_ALLOWED",
            details={"file_name": file.file_name, "content_type": file.content_type},
        )


def validate_attachments(
    files: Iterable[AttachmentMeta],
    *,
    already_selected: int = 0,
    max_files: int | None = None,
    max_size: int | None = None,
    allowed_types: Sequence[str] | None = None,
) -> None:
    """Validate a whole batch; nothing is uploaded unless every file passes."""
    files = list(files)
    max_files = settings.MAX_ATTACHMENTS if max_files is None else max_files
    if already_selected + len(files) > max_files:
        raise ValidationError(
            f"At most {max_files} attachments per message",
            code="TOO_MANY_ATTACHMENTS",
            details={"max_files": max_files},
        )
    for file in files:
        validate_attachment(file, max_size=max_size, allowed_types=allowed_types)


def _extension_for(upload: AttachmentUpload) -> str:
    if "." in upload.file_name:
        ext = upload.file_name.rsplit(".", 1)[-1].lower()
        if _SAFE_EXT_RE.match(ext):
            return ext
    guessed = mimetypes.guess_extension(upload.content_type or "")
    if guessed:
        return guessed.lstrip(".")
    return "bin"


def storage_path_for(message_id: UUID, upload: AttachmentUpload) -> str:
    return f"{ATTACHMENT_PREFIX}/{message_id}/{uuid.uuid4()}.{_extension_for(upload)}"


def upload_attachments(
    blob_store: BlobStore,
    message_id: UUID,
    uploads: Sequence[AttachmentUpload],
    *,
    retries: int | None = None,
) -> tuple[list[StoredAttachment], list[FailedAttachment]]:
    """Upload each file, retrying transient failures; one failure never aborts the batch."""
    retries = settings.ATTACHMENT_UPLOAD_RETRIES if retries is None else retries
    stored: list[StoredAttachment] = []
    failed: list[FailedAttachment] = []

    for upload in uploads:
        path = storage_path_for(message_id, upload)
        for attempt in range(retries + 1):
            try:
                url = blob_store.put(path, upload.data, upload.content_type)
            except StoreUnavailable as exc:
                logger.warning(
                    "attachments.upload_failed message=%s file=%s attempt=%s",
                    message_id,
                    upload.file_name,
                    attempt + 1,
                )
                if attempt == retries:
                    failed.append(FailedAttachment(file_name=upload.file_name, reason=exc.message))
                continue
            stored.append(
                StoredAttachment(
                    file_name=upload.file_name,
                    file_size=upload.size,
                    file_type=upload.content_type,
                    file_url=url,
                    storage_path=path,
                )
            )
            break

    return stored, failed


def discard_attachments(blob_store: BlobStore, stored: Sequence[StoredAttachment]) -> None:
    """Best-effort removal of blobs whose message was never saved."""
    for attachment in stored:
        try:
            blob_store.delete(attachment.storage_path)
        except StoreUnavailable:
            logger.warning("attachments.orphaned path=%s", attachment.storage_path, exc_info=True)
