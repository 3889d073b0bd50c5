"""Messaging endpoints: threads, sends, read receipts and the live stream."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..auth import get_current_user, resolve_user
from ..config import settings
from ..database import SessionLocal, get_db
from ..domain_errors import Unauthenticated
from ..models import User
from ..realtime import MessageBroker, Subscription, get_broker
from ..schemas import (
    FailedAttachmentOut,
    MessageOut,
    MessageReadResponse,
    SendMessageResponse,
    ThreadResponse,
)
from ..services.attachments import AttachmentUpload
from ..services.identity import IdentityResolver
from ..services.message_store import MessageStore, SendResult
from ..services.thread_view import renderable_thread
from ..storage import BlobStore, get_blob_store
from .projects import require_participant

router = APIRouter(tags=["messages"])
logger = logging.getLogger(__name__)


def get_message_store(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    broker: MessageBroker = Depends(get_broker),
) -> MessageStore:
    return MessageStore(db, blob_store, broker)


async def _read_uploads(files: list[UploadFile]) -> list[AttachmentUpload]:
    uploads = []
    for file in files:
        # Read at most one byte past the limit; validation rejects anything larger.
        data = await file.read(settings.MAX_ATTACHMENT_SIZE + 1)
        uploads.append(
            AttachmentUpload(
                file_name=file.filename or "",
                content_type=file.content_type or "application/octet-stream",
                data=data,
            )
        )
    return uploads


def _send_response(result: SendResult) -> SendMessageResponse:
    return SendMessageResponse(
        message=result.message,
        failed_attachments=[FailedAttachmentOut(file_name=f.file_name, reason=f.reason) for f in result.failed],
    )


@router.get("/projects/{project_id}/messages", response_model=ThreadResponse)
def get_thread(
    project_id: UUID,
    contractor_id: Optional[UUID] = Query(None),
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    """Thread for the current user: group view, or the private thread with one contractor."""
    require_participant(store.identity, project_id, current_user)
    owner_id = store.identity.owner_of(project_id)
    messages = store.list_messages(project_id, current_user.id)

    def _repair():
        store.aliases.ensure_aliases(project_id)
        return store.aliases.alias_table(project_id)

    thread = renderable_thread(
        messages,
        viewer_id=current_user.id,
        owner_id=owner_id,
        alias_table=store.aliases.alias_table(project_id),
        selected_contractor_id=contractor_id,
        repair=_repair,
    )
    return ThreadResponse(
        project_id=project_id,
        selected_contractor_id=contractor_id,
        messages=[m.to_out() for m in thread],
    )


@router.post(
    "/projects/{project_id}/messages/individual",
    response_model=SendMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_individual_message(
    project_id: UUID,
    recipient_id: UUID = Form(...),
    content: str = Form(""),
    client_id: Optional[str] = Form(None, max_length=64),
    files: Optional[list[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    """Send a private message to the homeowner or to one contractor."""
    uploads = await _read_uploads(files or [])
    result = await asyncio.to_thread(
        store.create_individual_message,
        project_id,
        current_user.id,
        recipient_id,
        content,
        uploads,
        client_id,
    )
    return _send_response(result)


@router.post(
    "/projects/{project_id}/messages/group",
    response_model=SendMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_group_message(
    project_id: UUID,
    content: str = Form(""),
    client_id: Optional[str] = Form(None, max_length=64),
    files: Optional[list[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    """Broadcast to every eligible contractor (project owner only)."""
    uploads = await _read_uploads(files or [])
    result = await asyncio.to_thread(
        store.create_group_message,
        project_id,
        current_user.id,
        content,
        uploads,
        client_id,
    )
    return _send_response(result)


@router.post("/messages/{message_id}/read", response_model=MessageReadResponse)
def mark_message_read(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    row = store.mark_read(message_id, current_user.id)
    return MessageReadResponse(message_id=row.message_id, read_at=row.read_at)


def _authorize_stream(project_id: UUID, token: str | None, request: Request) -> User:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
    if not token:
        raise Unauthenticated()

    db = SessionLocal()
    try:
        user = resolve_user(db, token)
        require_participant(IdentityResolver(db), project_id, user)
        return user
    finally:
        db.close()


async def message_events(
    subscribe: Callable[[Callable[[MessageOut], None]], Subscription],
    is_disconnected: Callable[[], Awaitable[bool]],
    heartbeat_seconds: float,
):
    """SSE chunks for one viewer; subscribes on first iteration, cancels on exit."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[MessageOut] = asyncio.Queue()

    def _on_message(message: MessageOut) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, message)

    subscription = subscribe(_on_message)
    try:
        yield ": connected\n\n"
        while not await is_disconnected():
            try:
                message = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue
            yield f"event: message\nid: {message.id}\ndata: {message.model_dump_json()}\n\n"
    finally:
        subscription.cancel()


@router.get("/projects/{project_id}/messages/stream")
async def stream_messages(
    project_id: UUID,
    request: Request,
    access_token: Optional[str] = Query(None),
    broker: MessageBroker = Depends(get_broker),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Server-sent events for new messages the current user sent or received.

    EventSource cannot set headers, so the token may also come as ``access_token``.
    Nothing is buffered across reconnects; clients re-fetch the thread to fill gaps.
    """
    user = await asyncio.to_thread(_authorize_stream, project_id, access_token, request)
    viewer_id = user.id

    def _subscribe(on_message: Callable[[MessageOut], None]) -> Subscription:
        db = SessionLocal()
        try:
            return MessageStore(db, blob_store, broker).subscribe(project_id, viewer_id, on_message)
        finally:
            db.close()

    async def _events():
        try:
            async for chunk in message_events(_subscribe, request.is_disconnected, settings.SSE_HEARTBEAT_SECONDS):
                yield chunk
        finally:
            logger.debug("messages.stream closed project=%s viewer=%s", project_id, viewer_id)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-store", "X-Accel-Buffering": "no"},
    )
