"""Chat membership, join request and share link Pydantic schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

JoinRequestStatusValue = Literal["pending", "approved", "rejected"]

# Result of get_chat_access_status, from the caller's point of view
ChatAccessStatusValue = Literal["admin", "member", "pending", "removed", "rejected", "can_request"]

__all__ = [
    "JoinRequestStatusValue",
    "ChatAccessStatusValue",
    "ChatMemberOut",
    "JoinRequestOut",
    "ChatAccessStatusOut",
    "ShareOut",
    "SharedProjectOut",
    "ShareAccessOut",
    "ShareAccessLogOut",
    "MySharedProjectOut",
    "JoinChatRequest",
    "SharedJoinRequest",
    "CreateShareRequest",
    "UpdateShareRequest",
]


# =============================================================================
# Response Schemas
# =============================================================================


class ChatMemberOut(BaseModel):
    """Response schema for a chat member.

    Exactly one of user_id / guest_name is set.
    """

    id: UUID
    project_id: UUID
    user_id: UUID | None = None
    guest_name: str | None = None
    display_name: str
    share_id: UUID | None = None
    joined_at: datetime
    last_seen_at: datetime
    is_active: bool
    removed_by: UUID | None = None
    removed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class JoinRequestOut(BaseModel):
    """Response schema for a chat join request."""

    id: UUID
    project_id: UUID
    user_id: UUID | None = None
    guest_name: str | None = None
    display_name: str
    status: JoinRequestStatusValue
    requested_at: datetime
    responded_at: datetime | None = None
    responded_by: UUID | None = None

    model_config = ConfigDict(from_attributes=True)


class ChatAccessStatusOut(BaseModel):
    """What the caller can do in a project's chat."""

    project_id: UUID
    status: ChatAccessStatusValue
    member_id: UUID | None = None
    request_id: UUID | None = None


class ShareOut(BaseModel):
    """Response schema for a share link (owner view, includes the token)."""

    id: UUID
    project_id: UUID
    creator_id: UUID
    share_token: str
    can_view: bool
    can_edit: bool
    can_chat: bool
    is_active: bool
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SharedProjectOut(BaseModel):
    """What a share-link visitor learns about the project."""

    share_id: UUID
    project_id: UUID
    project_name: str
    can_view: bool
    can_edit: bool
    can_chat: bool
    chat_requires_approval: bool


class ShareAccessOut(BaseModel):
    """Whether a share-link visit was recorded (the creator's own visits are not)."""

    logged: bool


class ShareAccessLogOut(BaseModel):
    """One recorded visit through a project's share links."""

    id: UUID
    share_id: UUID
    user_id: UUID | None = None
    display_name: str | None = None
    guest_identifier: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    accessed_at: datetime


class MySharedProjectOut(BaseModel):
    """A project someone else shared with the caller."""

    project_id: UUID
    project_name: str
    creator_id: UUID
    creator_name: str
    share_id: UUID | None = None
    last_accessed_at: datetime | None = None


# =============================================================================
# Request Schemas
# =============================================================================


class JoinChatRequest(BaseModel):
    """Request body for a signed-in user joining a chat directly."""

    share_id: UUID | None = Field(default=None, description="Share link the join came through")


class SharedJoinRequest(BaseModel):
    """Join or join-request through a share token. Guests supply guest_name."""

    guest_name: str | None = Field(default=None, description="Guest display name")


class CreateShareRequest(BaseModel):
    """Request body for creating a share link."""

    can_view: bool = True
    can_edit: bool = False
    can_chat: bool = False
    expires_at: datetime | None = None


class UpdateShareRequest(BaseModel):
    """Partial update of a share link. Omitted fields are left unchanged."""

    can_view: bool | None = None
    can_edit: bool | None = None
    can_chat: bool | None = None
    is_active: bool | None = None
    expires_at: datetime | None = None
