"""Project identity resolution: who owns a project, who is a contractor on it."""
from __future__ import annotations

from typing import Literal
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import NotFound
from ..models import Bid, Message, Project

ParticipantRole = Literal["owner", "contractor"]


class IdentityResolver:
    """Distinguishes the homeowner from bidders using the project owner column."""

    def __init__(self, db: Session):
        self.db = db

    def get_project(self, project_id: UUID) -> Project:
        project = self.db.query(Project).filter(Project.id == project_id).first()
        if not project:
            raise NotFound("Project not found", code="PROJECT_NOT_FOUND")
        return project

    def owner_of(self, project_id: UUID) -> UUID:
        row = self.db.query(Project.owner_id).filter(Project.id == project_id).first()
        if row is None:
            raise NotFound("Project not found", code="PROJECT_NOT_FOUND")
        return row[0]

    def participant_role(self, project_id: UUID, user_id: UUID) -> ParticipantRole | None:
        """Owner, contractor (bid or sent message), or None for outsiders."""
        owner_id = self.owner_of(project_id)
        if user_id == owner_id:
            return "owner"

        has_bid = self.db.query(Bid.id).filter(
            Bid.project_id == project_id,
            Bid.contractor_id == user_id,
        ).first()
        if has_bid:
            return "contractor"

        has_message = self.db.query(Message.id).filter(
            Message.project_id == project_id,
            Message.sender_id == user_id,
        ).first()
        return "contractor" if has_message else None

    def eligible_contractors(self, project_id: UUID) -> list[UUID]:
        """Contractors a group message fans out to, in first-bid order.

        Anyone with a live bid (not rejected or withdrawn); when the project has no
        such bid, contractors who have messaged on it. The owner is never included.
        """
        owner_id = self.owner_of(project_id)
        bid_rows = (
            self.db.query(Bid.contractor_id)
            .filter(
                Bid.project_id == project_id,
                Bid.contractor_id != owner_id,
                Bid.status.in_(LIVE_BID_STATUSES),
            )
            .order_by(Bid.created_at.asc())
            .all()
        )
        contractor_ids = _unique(row[0] for row in bid_rows)
        if contractor_ids:
            return contractor_ids

        sender_rows = (
            self.db.query(Message.sender_id)
            .filter(
                Message.project_id == project_id,
                Message.sender_id != owner_id,
            )
            .order_by(Message.created_at.asc())
            .all()
        )
        return _unique(row[0] for row in sender_rows)


LIVE_BID_STATUSES = ("pending", "accepted")


def _unique(ids) -> list[UUID]:
    seen: set[UUID] = set()
    ordered: list[UUID] = []
    for item in ids:
        if item in seen:
            continue
        seen.add(item)
        ordered.append(item)
    return ordered
