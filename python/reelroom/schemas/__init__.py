"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from reelroom.schemas.chat import (
    ChatMessageOut,
    MessageInfoOut,
    PageInfo,
    ProjectReadOut,
    ProjectUnreadOut,
    ReceiptOut,
    ReplyContextOut,
    SendMessageRequest,
    SharedSendMessageRequest,
    SharedUpdateMessageStatusRequest,
    UnreadCountsOut,
    UpdateMessageStatusRequest,
)
from reelroom.schemas.membership import (
    ChatAccessStatusOut,
    ChatMemberOut,
    CreateShareRequest,
    JoinChatRequest,
    JoinRequestOut,
    SharedJoinRequest,
    SharedProjectOut,
    ShareOut,
    UpdateShareRequest,
)

__all__ = [
    # Chat
    "ChatMessageOut",
    "MessageInfoOut",
    "PageInfo",
    "ReceiptOut",
    "ReplyContextOut",
    "SendMessageRequest",
    "SharedSendMessageRequest",
    "UpdateMessageStatusRequest",
    "SharedUpdateMessageStatusRequest",
    # Unread
    "ProjectUnreadOut",
    "UnreadCountsOut",
    "ProjectReadOut",
    # Membership
    "ChatMemberOut",
    "JoinRequestOut",
    "ChatAccessStatusOut",
    "JoinChatRequest",
    "SharedJoinRequest",
    # Shares
    "ShareOut",
    "SharedProjectOut",
    "CreateShareRequest",
    "UpdateShareRequest",
]
