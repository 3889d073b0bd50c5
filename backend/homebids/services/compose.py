"""Client-side compose and feed state for the messaging screen.

Front ends drive these objects; the HTTP routers only transport their intents.
"""
from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from ..domain_errors import ValidationError
from ..schemas import MessageOut, MessageType
from .attachments import validate_attachments


@dataclass(frozen=True)
class SelectedFile:
    file_name: str
    size: int
    content_type: str


@dataclass(frozen=True)
class OutgoingMessage:
    client_id: str
    content: str
    files: tuple[SelectedFile, ...]


class ComposeState:
    """Text and files of the message being written, plus the in-flight flag."""

    def __init__(
        self,
        *,
        max_files: int | None = None,
        max_size: int | None = None,
        allowed_types: Sequence[str] | None = None,
    ):
        self.content = ""
        self.files: list[SelectedFile] = []
        self.in_flight = False
        self.last_error: str | None = None
        self._limits = {"max_files": max_files, "max_size": max_size, "allowed_types": allowed_types}

    def set_content(self, content: str) -> None:
        self.content = content

    def add_files(self, files: Iterable[SelectedFile]) -> None:
        """Select more files; a batch with any invalid file is rejected as a whole."""
        batch = list(files)
        validate_attachments(batch, already_selected=len(self.files), **self._limits)
        self.files.extend(batch)

    def remove_file(self, index: int) -> SelectedFile:
        return self.files.pop(index)

    @property
    def has_body(self) -> bool:
        return bool(self.content.strip()) or bool(self.files)

    @property
    def can_send(self) -> bool:
        return self.has_body and not self.in_flight

    def begin_send(self) -> OutgoingMessage:
        if self.in_flight:
            raise ValidationError("A message is already being sent", code="SEND_IN_FLIGHT")
        if not self.has_body:
            raise ValidationError("Message must have content or attachments", code="EMPTY_MESSAGE")
        self.in_flight = True
        self.last_error = None
        return OutgoingMessage(
            client_id=uuid.uuid4().hex,
            content=self.content.strip(),
            files=tuple(self.files),
        )

    def send_failed(self, error: str) -> None:
        # Text and files stay so the user can retry as-is.
        self.in_flight = False
        self.last_error = error

    def send_succeeded(self) -> None:
        self.in_flight = False
        self.last_error = None
        self.content = ""
        self.files = []


@dataclass(frozen=True)
class FeedItem:
    message: MessageOut
    pending: bool = False


@dataclass
class ThreadFeed:
    """Messages shown in one thread: server messages plus optimistic echoes."""

    project_id: UUID
    _messages: dict[UUID, MessageOut] = field(default_factory=dict)
    _echoes: dict[str, MessageOut] = field(default_factory=dict)

    def add_echo(
        self,
        outgoing: OutgoingMessage,
        *,
        sender_id: UUID,
        message_type: MessageType,
        recipient_ids: Sequence[UUID] = (),
    ) -> MessageOut:
        echo = MessageOut(
            id=uuid.uuid4(),
            project_id=self.project_id,
            sender_id=sender_id,
            content=outgoing.content,
            message_type=message_type,
            client_id=outgoing.client_id,
            created_at=datetime.now(timezone.utc),
            recipient_ids=list(recipient_ids),
        )
        self._echoes[outgoing.client_id] = echo
        return echo

    def drop_echo(self, client_id: str) -> None:
        self._echoes.pop(client_id, None)

    def apply(self, message: MessageOut) -> None:
        """Record an authoritative message (from subscribe or a send response)."""
        if message.client_id:
            self._echoes.pop(message.client_id, None)
        self._messages[message.id] = message

    def merge_snapshot(self, messages: Iterable[MessageOut]) -> None:
        for message in messages:
            self.apply(message)

    def items(self) -> list[FeedItem]:
        confirmed = sorted(self._messages.values(), key=lambda m: (m.created_at, str(m.id)))
        items = [FeedItem(message=m) for m in confirmed]
        items.extend(FeedItem(message=echo, pending=True) for echo in self._echoes.values())
        return items

    def messages(self) -> list[MessageOut]:
        return [item.message for item in self.items()]
