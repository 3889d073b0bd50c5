"""Message store adapter: create, list, subscribe to and mark messages read."""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from ..domain_errors import Forbidden, NoRecipients, NotFound, StoreUnavailable, Unauthenticated, ValidationError
from ..models import Message, MessageAttachment, MessageRecipient, utcnow
from ..realtime import MessageBroker, MessageEvent, Subscription
from ..schemas import AttachmentOut, MessageOut
from ..storage import BlobStore
from .aliases import AliasAssignor
from .attachments import (
    AttachmentUpload,
    FailedAttachment,
    discard_attachments,
    upload_attachments,
    validate_attachments,
)
from .identity import IdentityResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    message: MessageOut
    failed: tuple[FailedAttachment, ...] = ()


def _as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_message_out(message: Message) -> MessageOut:
    return MessageOut(
        id=message.id,
        project_id=message.project_id,
        sender_id=message.sender_id,
        content=message.content or "",
        message_type=message.message_type,
        sender_alias=message.sender_alias,
        client_id=message.client_id,
        created_at=_as_utc(message.created_at),
        recipient_ids=[r.recipient_id for r in message.recipients],
        attachments=[AttachmentOut.model_validate(a) for a in message.attachments],
    )


class MessageStore:
    """Persists messages and fans out "message created" events.

    Collaborators are passed in so the same adapter runs against any session, blob
    store and realtime transport.
    """

    def __init__(
        self,
        db: Session,
        blob_store: BlobStore,
        broker: MessageBroker,
        *,
        identity: IdentityResolver | None = None,
        aliases: AliasAssignor | None = None,
    ):
        self.db = db
        self.blob_store = blob_store
        self.broker = broker
        self.identity = identity or IdentityResolver(db)
        self.aliases = aliases or AliasAssignor(db, self.identity)

    @staticmethod
    def _require_viewer(user_id: UUID | None) -> UUID:
        if user_id is None:
            raise Unauthenticated()
        return user_id

    @staticmethod
    def _require_body(content: str, attachments: Sequence[AttachmentUpload]) -> None:
        if not content and not attachments:
            raise ValidationError("Message must have content or attachments", code="EMPTY_MESSAGE")

    def eligible_contractors(self, project_id: UUID) -> list[UUID]:
        return self.identity.eligible_contractors(project_id)

    def create_individual_message(
        self,
        project_id: UUID,
        sender_id: UUID | None,
        recipient_id: UUID | None,
        content: str,
        attachments: Sequence[AttachmentUpload] = (),
        client_id: str | None = None,
    ) -> SendResult:
        """Private message between the homeowner and one contractor."""
        sender_id = self._require_viewer(sender_id)
        content = (content or "").strip()
        self._require_body(content, attachments)
        validate_attachments(attachments)

        owner_id = self.identity.owner_of(project_id)
        if recipient_id is None or recipient_id == sender_id:
            raise ValidationError("Invalid recipient", code="INVALID_RECIPIENT")
        if sender_id == owner_id:
            # Any contractor on the project, including one whose bid was rejected
            # or who only ever messaged.
            if self.identity.participant_role(project_id, recipient_id) != "contractor":
                raise ValidationError(
                    "Recipient is not a contractor on this project",
                    code="INVALID_RECIPIENT",
                    details={"recipient_id": str(recipient_id)},
                )
        elif recipient_id != owner_id:
            raise ValidationError(
                "Contractors can only message the project owner",
                code="INVALID_RECIPIENT",
                details={"recipient_id": str(recipient_id)},
            )

        return self._persist(
            project_id=project_id,
            owner_id=owner_id,
            sender_id=sender_id,
            message_type="individual",
            content=content,
            recipient_ids=[recipient_id],
            attachments=attachments,
            client_id=client_id,
        )

    def create_group_message(
        self,
        project_id: UUID,
        sender_id: UUID | None,
        content: str,
        attachments: Sequence[AttachmentUpload] = (),
        client_id: str | None = None,
    ) -> SendResult:
        """Broadcast from the homeowner to every eligible contractor."""
        sender_id = self._require_viewer(sender_id)
        content = (content or "").strip()
        self._require_body(content, attachments)
        validate_attachments(attachments)

        owner_id = self.identity.owner_of(project_id)
        if sender_id != owner_id:
            raise Forbidden("Only the project owner can send group messages", code="GROUP_SEND_FORBIDDEN")

        recipient_ids = self.identity.eligible_contractors(project_id)
        if not recipient_ids:
            raise NoRecipients()

        return self._persist(
            project_id=project_id,
            owner_id=owner_id,
            sender_id=sender_id,
            message_type="group",
            content=content,
            recipient_ids=recipient_ids,
            attachments=attachments,
            client_id=client_id,
        )

    def _persist(
        self,
        *,
        project_id: UUID,
        owner_id: UUID,
        sender_id: UUID,
        message_type: str,
        content: str,
        recipient_ids: list[UUID],
        attachments: Sequence[AttachmentUpload],
        client_id: str | None,
    ) -> SendResult:
        message_id = uuid.uuid4()
        stored, failed = upload_attachments(self.blob_store, message_id, attachments)
        if attachments and not stored and not content:
            raise StoreUnavailable(
                "No attachment could be stored",
                details={"failed": [f.file_name for f in failed]},
            )

        from_contractor = sender_id != owner_id
        message = Message(
            id=message_id,
            project_id=project_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            sender_alias=self.aliases.label_for(project_id, sender_id) if from_contractor else None,
            client_id=client_id,
        )
        message.recipients = [MessageRecipient(recipient_id=rid) for rid in recipient_ids]
        message.attachments = [
            MessageAttachment(
                file_name=s.file_name,
                file_size=s.file_size,
                file_type=s.file_type,
                file_url=s.file_url,
                storage_path=s.storage_path,
            )
            for s in stored
        ]
        self.db.add(message)
        try:
            self.db.commit()
        except OperationalError as exc:
            self.db.rollback()
            logger.error("messages.persist_failed project=%s sender=%s", project_id, sender_id)
            discard_attachments(self.blob_store, stored)
            raise StoreUnavailable("Failed to save message") from exc

        if from_contractor and message.sender_alias is None:
            # First contact through a message rather than a bid. The message is already
            # saved, so a failure here is left to the alias sweep and thread repair.
            try:
                self.aliases.ensure_aliases(project_id)
                message.sender_alias = self.aliases.label_for(project_id, sender_id)
                self.db.commit()
            except (StoreUnavailable, OperationalError):
                self.db.rollback()
                logger.warning(
                    "messages.alias_deferred id=%s project=%s sender=%s",
                    message_id,
                    project_id,
                    sender_id,
                    exc_info=True,
                )

        out = to_message_out(message)
        logger.info(
            "messages.sent id=%s project=%s type=%s recipients=%s attachments=%s failed=%s",
            out.id,
            project_id,
            message_type,
            len(recipient_ids),
            len(stored),
            len(failed),
        )
        self.broker.publish(MessageEvent(project_id=project_id, message=out))
        return SendResult(message=out, failed=tuple(failed))

    def list_messages(self, project_id: UUID, viewer_id: UUID | None) -> list[MessageOut]:
        """Messages the viewer sent or received, oldest first."""
        viewer_id = self._require_viewer(viewer_id)
        self.identity.owner_of(project_id)

        received = select(MessageRecipient.message_id).where(MessageRecipient.recipient_id == viewer_id)
        messages = (
            self.db.query(Message)
            .options(selectinload(Message.recipients), selectinload(Message.attachments))
            .filter(
                Message.project_id == project_id,
                or_(Message.sender_id == viewer_id, Message.id.in_(received)),
            )
            .order_by(Message.created_at.asc(), Message.id.asc())
            .all()
        )
        return [to_message_out(m) for m in messages]

    def subscribe(
        self,
        project_id: UUID,
        viewer_id: UUID | None,
        on_message: Callable[[MessageOut], None],
    ) -> Subscription:
        """Deliver new messages the viewer sent or received until cancelled."""
        viewer_id = self._require_viewer(viewer_id)
        self.identity.owner_of(project_id)

        def _relevant(event: MessageEvent) -> None:
            message = event.message
            if message.sender_id == viewer_id or viewer_id in message.recipient_ids:
                on_message(message)

        return self.broker.subscribe(project_id, _relevant)

    def mark_read(self, message_id: UUID, viewer_id: UUID | None) -> MessageRecipient:
        viewer_id = self._require_viewer(viewer_id)
        row = self.db.query(MessageRecipient).filter(
            MessageRecipient.message_id == message_id,
            MessageRecipient.recipient_id == viewer_id,
        ).first()
        if not row:
            raise NotFound("Message not found", code="MESSAGE_NOT_FOUND")

        # Idempotent: the first read time is kept.
        if row.read_at is None:
            row.read_at = utcnow()
            self.db.commit()
        return row

    def attachment_for_viewer(self, storage_path: str, viewer_id: UUID | None) -> MessageAttachment:
        """Attachment at ``storage_path`` if the viewer sent or received its message."""
        viewer_id = self._require_viewer(viewer_id)
        attachment = self.db.query(MessageAttachment).filter(
            MessageAttachment.storage_path == storage_path,
        ).first()
        if attachment is None:
            raise NotFound("File not found", code="ATTACHMENT_NOT_FOUND")

        message = attachment.message
        if message.sender_id == viewer_id:
            return attachment
        if any(r.recipient_id == viewer_id for r in message.recipients):
            return attachment
        # Same answer as a missing file so paths cannot be probed.
        raise NotFound("File not found", code="ATTACHMENT_NOT_FOUND")
