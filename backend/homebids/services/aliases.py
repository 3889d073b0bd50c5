"""Contractor alias assignment.

Every contractor who interacts with a project (bid or message) gets one short label,
unique within the project and never renumbered: ``A``..``Z``, then ``AA``, ``AB``, ...
Labels are handed out in first-seen order of the contractor's earliest bid or message.

Assignment is insert-if-absent under two unique constraints, (project, contractor) and
(project, label). Each alias is committed on its own, so a concurrent writer that wins
the race makes our insert fail: if it labeled the same contractor we are done, if it
took the label we reload and try the next free one.
"""
from __future__ import annotations

import logging
import string
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..domain_errors import StoreUnavailable
from ..models import Bid, ContractorAlias, Message
from ..schemas import ContractorSummary
from .identity import IdentityResolver

logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_uppercase
_MAX_INSERT_ATTEMPTS = 8


def alias_label(index: int) -> str:
    """Zero-based index to label: 0 -> A, 25 -> Z, 26 -> AA."""
    if index < 0:
        raise ValueError("index must be non-negative")
    label = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, len(_ALPHABET))
        label = _ALPHABET[rem] + label
    return label


def next_free_label(used: set[str]) -> str:
    index = 0
    while alias_label(index) in used:
        index += 1
    return alias_label(index)


def display_name_for(label: str | None) -> str | None:
    return f"Contractor {label}" if label else None


def _as_utc(dt: datetime | None) -> datetime:
    if dt is None:
        return datetime.max.replace(tzinfo=timezone.utc)
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class AliasTable:
    """Read-only snapshot of one project's contractor labels."""

    project_id: UUID
    labels: Mapping[UUID, str] = field(default_factory=dict)

    def label_for(self, contractor_id: UUID) -> str | None:
        return self.labels.get(contractor_id)

    def __contains__(self, contractor_id: object) -> bool:
        return contractor_id in self.labels


class AliasAssignor:
    """Assigns and looks up per-project contractor aliases.

    ``ensure_aliases`` commits and may roll back the session it was given; call it on
    a session without unrelated pending changes.
    """

    def __init__(self, db: Session, identity: IdentityResolver | None = None):
        self.db = db
        self.identity = identity or IdentityResolver(db)

    def _load_labels(self, project_id: UUID) -> dict[UUID, str]:
        rows = self.db.query(ContractorAlias.contractor_id, ContractorAlias.label).filter(
            ContractorAlias.project_id == project_id,
        ).all()
        return {contractor_id: label for contractor_id, label in rows}

    def contractors_in_first_seen_order(self, project_id: UUID, owner_id: UUID) -> list[UUID]:
        """Distinct non-owner contractors ordered by earliest bid or message."""
        bid_rows = self.db.query(Bid.contractor_id, Bid.created_at).filter(
            Bid.project_id == project_id,
            Bid.contractor_id != owner_id,
        ).all()
        message_rows = self.db.query(Message.sender_id, func.min(Message.created_at)).filter(
            Message.project_id == project_id,
            Message.sender_id != owner_id,
        ).group_by(Message.sender_id).all()

        # On equal timestamps a bid counts as seen before a message.
        interactions = [(_as_utc(seen_at), 0, str(cid), cid) for cid, seen_at in bid_rows]
        interactions += [(_as_utc(seen_at), 1, str(cid), cid) for cid, seen_at in message_rows]
        interactions.sort(key=lambda item: item[:3])

        ordered: list[UUID] = []
        seen: set[UUID] = set()
        for *_sort_key, contractor_id in interactions:
            if contractor_id in seen:
                continue
            seen.add(contractor_id)
            ordered.append(contractor_id)
        return ordered

    def ensure_aliases(self, project_id: UUID) -> list[ContractorAlias]:
        """Label every contractor seen on the project; returns the rows created now."""
        owner_id = self.identity.owner_of(project_id)
        contractors = self.contractors_in_first_seen_order(project_id, owner_id)
        if not contractors:
            return []

        existing = self._load_labels(project_id)
        created: list[ContractorAlias] = []
        for contractor_id in contractors:
            if contractor_id in existing:
                continue
            alias = self._insert_alias(project_id, contractor_id, existing)
            if alias is not None:
                created.append(alias)
        return created

    def _insert_alias(
        self,
        project_id: UUID,
        contractor_id: UUID,
        existing: dict[UUID, str],
    ) -> ContractorAlias | None:
        for _attempt in range(_MAX_INSERT_ATTEMPTS):
            label = next_free_label(set(existing.values()))
            alias = ContractorAlias(project_id=project_id, contractor_id=contractor_id, label=label)
            self.db.add(alias)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                existing.clear()
                existing.update(self._load_labels(project_id))
                if contractor_id in existing:
                    logger.info(
                        "aliases.race_lost project=%s contractor=%s label=%s",
                        project_id,
                        contractor_id,
                        existing[contractor_id],
                    )
                    return None
                continue

            existing[contractor_id] = label
            logger.info("aliases.assigned project=%s contractor=%s label=%s", project_id, contractor_id, label)
            return alias

        logger.error("aliases.exhausted project=%s contractor=%s", project_id, contractor_id)
        raise StoreUnavailable("Could not assign contractor alias, try again")

    def label_for(self, project_id: UUID, contractor_id: UUID) -> str | None:
        row = self.db.query(ContractorAlias.label).filter(
            ContractorAlias.project_id == project_id,
            ContractorAlias.contractor_id == contractor_id,
        ).first()
        return row[0] if row else None

    def alias_table(self, project_id: UUID) -> AliasTable:
        return AliasTable(project_id=project_id, labels=self._load_labels(project_id))

    def contractors_with_aliases(self, project_id: UUID) -> list[ContractorSummary]:
        """Every contractor seen on the project, anonymized, in label order."""
        owner_id = self.identity.owner_of(project_id)
        labels = self._load_labels(project_id)
        bids = {
            bid.contractor_id: bid
            for bid in self.db.query(Bid).filter(Bid.project_id == project_id).all()
        }

        summaries = []
        for contractor_id in self.contractors_in_first_seen_order(project_id, owner_id):
            label = labels.get(contractor_id)
            bid = bids.get(contractor_id)
            summaries.append(
                ContractorSummary(
                    id=contractor_id,
                    alias=label,
                    display_name=display_name_for(label) or "Contractor",
                    bid_amount=bid.amount if bid else None,
                    bid_status=bid.status if bid else None,
                )
            )
        summaries.sort(key=lambda s: (s.alias is None, len(s.alias or ""), s.alias or ""))
        return summaries
