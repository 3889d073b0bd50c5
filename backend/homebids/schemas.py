"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID


UserRole = Literal["homeowner", "contractor", "property_manager", "admin"]
MessageType = Literal["individual", "group"]


# Auth schemas
class SignUpRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str
    metadata: dict[str, str] = Field(default_factory=dict)


class SignInRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None
    role: UserRole
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# Project / bid schemas
class ProjectCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    status: Literal["draft", "published", "bidding"] = "published"


class ProjectResponse(BaseModel):
    id: UUID
    owner_id: UUID
    title: str
    description: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class BidCreate(BaseModel):
    amount: Decimal = Field(ge=0)
    description: Optional[str] = None


class BidResponse(BaseModel):
    id: UUID
    project_id: UUID
    contractor_id: UUID
    amount: Decimal
    description: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Alias schemas
class ContractorSummary(BaseModel):
    """Anonymized contractor entry; never carries the contractor's real name."""

    id: UUID
    alias: Optional[str] = None
    display_name: str
    bid_amount: Optional[Decimal] = None
    bid_status: Optional[str] = None


# Message schemas
class AttachmentOut(BaseModel):
    id: UUID
    file_name: str
    file_size: int
    file_type: str
    file_url: str
    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    id: UUID
    project_id: UUID
    sender_id: UUID
    content: str
    message_type: MessageType
    sender_alias: Optional[str] = None
    client_id: Optional[str] = None
    created_at: datetime
    recipient_ids: list[UUID] = Field(default_factory=list)
    attachments: list[AttachmentOut] = Field(default_factory=list)


class FailedAttachmentOut(BaseModel):
    file_name: str
    reason: str


class SendMessageResponse(BaseModel):
    message: MessageOut
    failed_attachments: list[FailedAttachmentOut] = Field(default_factory=list)


class DisplayMessageOut(BaseModel):
    id: UUID
    sender_id: UUID
    sender_label: Optional[str] = None
    sender_display_name: Optional[str] = None
    content: str
    message_type: MessageType
    is_own: bool
    is_group: bool
    client_id: Optional[str] = None
    created_at: datetime
    attachments: list[AttachmentOut] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class ThreadResponse(BaseModel):
    project_id: UUID
    selected_contractor_id: Optional[UUID] = None
    messages: list[DisplayMessageOut]


class MessageReadResponse(BaseModel):
    message_id: UUID
    read_at: datetime
