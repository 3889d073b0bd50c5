"""Turns a flat message list into the thread a viewer sees.

Pure functions of (messages, viewer, owner, alias table, filter). Labels always come
from the alias table; they are never derived from message order or content.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from uuid import UUID

from ..domain_errors import AliasMissing
from ..schemas import DisplayMessageOut, MessageOut
from .aliases import AliasTable, display_name_for

logger = logging.getLogger(__name__)

OWNER_DISPLAY_NAME = "Homeowner"


@dataclass(frozen=True)
class DisplayMessage:
    message: MessageOut
    is_own: bool
    is_from_contractor: bool
    label: str | None

    @property
    def is_group(self) -> bool:
        return self.message.message_type == "group"

    @property
    def display_name(self) -> str:
        if self.is_from_contractor:
            return display_name_for(self.label) or "Contractor"
        return OWNER_DISPLAY_NAME

    def to_out(self) -> DisplayMessageOut:
        m = self.message
        return DisplayMessageOut(
            id=m.id,
            sender_id=m.sender_id,
            sender_label=self.label,
            sender_display_name=self.display_name,
            content=m.content,
            message_type=m.message_type,
            is_own=self.is_own,
            is_group=self.is_group,
            client_id=m.client_id,
            created_at=m.created_at,
            attachments=m.attachments,
        )


def in_view(
    message: MessageOut,
    *,
    viewer_id: UUID,
    owner_id: UUID,
    selected_contractor_id: UUID | None,
) -> bool:
    if selected_contractor_id is not None:
        # Private thread with one contractor: their messages plus what the viewer sent them.
        if message.sender_id == selected_contractor_id:
            return True
        return message.sender_id == viewer_id and selected_contractor_id in message.recipient_ids

    if viewer_id == owner_id or message.message_type == "group":
        return True
    return message.sender_id == viewer_id or viewer_id in message.recipient_ids


def _missing_labels(messages: Sequence[MessageOut], owner_id: UUID, table: AliasTable) -> set[UUID]:
    return {m.sender_id for m in messages if m.sender_id != owner_id and m.sender_id not in table}


def renderable_thread(
    messages: Sequence[MessageOut],
    viewer_id: UUID,
    owner_id: UUID,
    alias_table: AliasTable,
    selected_contractor_id: UUID | None = None,
    repair: Callable[[], AliasTable] | None = None,
) -> list[DisplayMessage]:
    """Classify, label and filter ``messages`` for one viewer.

    ``repair`` is called once when a contractor sender has no label (it should run
    alias assignment and return the refreshed table). A label still missing after
    that raises ``AliasMissing``.
    """
    visible = [
        m
        for m in messages
        if in_view(m, viewer_id=viewer_id, owner_id=owner_id, selected_contractor_id=selected_contractor_id)
    ]

    table = alias_table
    missing = _missing_labels(visible, owner_id, table)
    if missing and repair is not None:
        logger.info("thread.alias_repair project=%s missing=%s", table.project_id, len(missing))
        table = repair()
        missing = _missing_labels(visible, owner_id, table)
    if missing:
        raise AliasMissing(
            "Contractor alias missing",
            details={"contractor_ids": sorted(str(cid) for cid in missing)},
        )

    thread = []
    for m in visible:
        from_contractor = m.sender_id != owner_id
        thread.append(
            DisplayMessage(
                message=m,
                is_own=m.sender_id == viewer_id,
                is_from_contractor=from_contractor,
                label=table.label_for(m.sender_id) if from_contractor else None,
            )
        )
    return thread
