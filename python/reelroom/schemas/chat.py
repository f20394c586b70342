"""Chat message and unread-count Pydantic schemas.

Contains request and response models for message endpoints and the
unread counter.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Valid message statuses - must match DB constraint
MESSAGE_STATUSES = Literal["sent", "delivered", "read"]

# Statuses a participant may report for a message
REPORTABLE_STATUSES = Literal["delivered", "read"]


# =============================================================================
# Response Schemas
# =============================================================================


class ReplyContextOut(BaseModel):
    """Snapshot of the message being replied to, resolved at read time."""

    id: UUID
    sender_id: str
    sender_name: str
    content: str
    is_deleted: bool = False


class ChatMessageOut(BaseModel):
    """Response schema for a chat message.

    delivered_to / read_by list participant ids. reply_to is None when the
    message is not a reply or when the target no longer exists.
    reactions maps each emoji to the participant ids that used it.
    """

    id: UUID
    project_id: UUID
    sender_id: str
    sender_name: str
    content: str
    status: str  # "sent" | "delivered" | "read"
    delivered_to: list[str]
    read_by: list[str]
    reply_to_message_id: UUID | None = None
    reply_to: ReplyContextOut | None = None
    is_system_message: bool = False
    system_message_type: str | None = None
    system_message_data: dict[str, Any] | None = None
    is_edited: bool = False
    edited_at: datetime | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    deleted_by: str | None = None
    is_pinned: bool = False
    pinned_at: datetime | None = None
    pinned_by: UUID | None = None
    reactions: dict[str, list[str]] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReceiptOut(BaseModel):
    """One participant's delivery or read marker."""

    participant_id: str
    name: str
    at: datetime


class MessageInfoOut(BaseModel):
    """Delivery detail for a message, visible to its sender only."""

    message_id: UUID
    status: str
    delivered_to: list[ReceiptOut]
    read_by: list[ReceiptOut]


class PageInfo(BaseModel):
    """Pagination information for list responses."""

    next_cursor: str | None = None


class ProjectUnreadOut(BaseModel):
    """Unread summary for one project."""

    project_id: UUID
    project_name: str
    unread_count: int
    last_message_preview: str | None = None
    last_message_at: datetime | None = None


class UnreadCountsOut(BaseModel):
    """Unread counts across every chat the user belongs to."""

    projects: list[ProjectUnreadOut]
    total_unread: int


class ProjectReadOut(BaseModel):
    """The stored read watermark after mark-read."""

    project_id: UUID
    user_id: UUID
    last_read_at: datetime


# =============================================================================
# Request Schemas
# =============================================================================


class SendMessageRequest(BaseModel):
    """Request body for posting a chat message."""

    content: str = Field(..., description="Message body")
    reply_to_message_id: UUID | None = Field(default=None, description="Message being replied to")


class SharedSendMessageRequest(SendMessageRequest):
    """Posting through a share link. Guests identify with guest_name."""

    guest_name: str | None = Field(default=None, description="Guest display name")


class UpdateMessageStatusRequest(BaseModel):
    """Request body for reporting delivery or read."""

    status: REPORTABLE_STATUSES


class SharedUpdateMessageStatusRequest(UpdateMessageStatusRequest):
    """Reporting status through a share link."""

    guest_name: str | None = Field(default=None, description="Guest display name")


class EditMessageRequest(BaseModel):
    """Request body for editing a message's content."""

    content: str = Field(..., description="New message body")


class PinMessageRequest(BaseModel):
    """Request body for pinning or unpinning a message."""

    pinned: bool


class ReactToMessageRequest(BaseModel):
    """Request body for toggling an emoji reaction."""

    emoji: str = Field(..., description="Emoji to add, or remove if already present")
