"""Attachment download endpoint (authenticated + authorized)."""

from __future__ import annotations

import logging
import time
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request, Response

from ..auth import get_current_user
from ..config import settings
from ..models import User
from ..services.message_store import MessageStore
from ..storage import BlobStore, get_blob_store, sanitize_blob_path
from .messages import get_message_store

router = APIRouter(prefix="/attachments", tags=["attachments"])
logger = logging.getLogger(__name__)


@router.get("/serve/{path:path}")
def serve_file(
    path: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Serve a message attachment to its sender or one of its recipients."""
    start = time.perf_counter()
    path = sanitize_blob_path(path)
    attachment = store.attachment_for_viewer(path, current_user.id)

    etag = f'W/"{attachment.id}-{attachment.file_size}"'
    response_headers = {
        "Cache-Control": "private, max-age=3600, must-revalidate",
        "ETag": etag,
        "Content-Disposition": f"inline; filename*=UTF-8''{quote(attachment.file_name)}",
    }
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=response_headers)

    data = blob_store.get(path)
    if settings.DEBUG:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("attachments.serve path=%s ms=%.0f size=%s", path, elapsed_ms, len(data))
    return Response(content=data, media_type=attachment.file_type, headers=response_headers)
