"""SQLAlchemy models for projects, bids, contractor aliases and messaging."""
from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Boolean, Column, String, Integer, Numeric, DateTime, Text, Uuid,
    ForeignKey, CheckConstraint, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Marketplace account (homeowner, contractor, ...)."""
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(30), nullable=False, default="homeowner", index=True)
    # Monotonically increasing version used to revoke previously issued tokens.
    token_version = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            role.in_(["homeowner", "contractor", "property_manager", "admin"]),
            name="chk_user_role",
        ),
    )


class Project(Base):
    """Unit of work posted by a homeowner."""
    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="published", index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            status.in_(["draft", "published", "bidding", "in_progress", "completed", "cancelled"]),
            name="chk_project_status",
        ),
    )

    owner = relationship("User")
    bids = relationship("Bid", back_populates="project", cascade="all, delete-orphan")
    aliases = relationship("ContractorAlias", back_populates="project", cascade="all, delete-orphan")


class Bid(Base):
    """Contractor bid on a project."""
    __tablename__ = "bids"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    contractor_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(amount >= 0, name="chk_bid_amount_non_negative"),
        CheckConstraint(
            status.in_(["pending", "accepted", "rejected", "withdrawn"]),
            name="chk_bid_status",
        ),
        UniqueConstraint("project_id", "contractor_id", name="uq_bid_project_contractor"),
    )

    project = relationship("Project", back_populates="bids")


class ContractorAlias(Base):
    """Stable pseudonymous label of a contractor within one project."""
    __tablename__ = "contractor_aliases"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    contractor_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    label = Column(String(8), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    # Both constraints back the insert-if-absent discipline of alias assignment.
    __table_args__ = (
        UniqueConstraint("project_id", "contractor_id", name="uq_alias_project_contractor"),
        UniqueConstraint("project_id", "label", name="uq_alias_project_label"),
    )

    project = relationship("Project", back_populates="aliases")


class Message(Base):
    """Single communication event (append-only)."""
    __tablename__ = "messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    message_type = Column(String(20), nullable=False)
    # Label snapshot at send time; display uses the alias table.
    sender_alias = Column(String(8), nullable=True)
    client_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            message_type.in_(["individual", "group"]),
            name="chk_message_type",
        ),
        Index("idx_messages_project_created", "project_id", "created_at"),
    )

    recipients = relationship("MessageRecipient", back_populates="message", cascade="all, delete-orphan")
    attachments = relationship("MessageAttachment", back_populates="message", cascade="all, delete-orphan")


class MessageRecipient(Base):
    """One intended recipient of a message, with read receipt."""
    __tablename__ = "message_recipients"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("message_id", "recipient_id", name="uq_message_recipient"),
    )

    message = relationship("Message", back_populates="recipients")


class MessageAttachment(Base):
    """File attached to a message; immutable once created."""
    __tablename__ = "message_attachments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)
    file_type = Column(String(127), nullable=False)
    file_url = Column(Text, nullable=False)
    storage_path = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        CheckConstraint(file_size >= 0, name="chk_attachment_size_non_negative"),
    )

    message = relationship("Message", back_populates="attachments")
