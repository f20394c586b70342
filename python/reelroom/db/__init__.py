"""Database module for Reelroom.

Provides engine creation, session management, and ORM models.
"""

from reelroom.db.engine import create_db_engine
from reelroom.db.models import (
    Base,
    ChatJoinRequest,
    JoinRequestStatus,
    Message,
    MessageReaction,
    MessageReceipt,
    MessageStatus,
    Profile,
    Project,
    ProjectChatMember,
    ProjectLastRead,
    ProjectShare,
    ReceiptState,
    ShareAccessLog,
    SystemMessageType,
)
from reelroom.db.session import create_session_factory

__all__ = [
    # Engine and session
    "create_db_engine",
    "create_session_factory",
    # Base
    "Base",
    # Enums
    "MessageStatus",
    "ReceiptState",
    "SystemMessageType",
    "JoinRequestStatus",
    # Models
    "Profile",
    "Project",
    "ProjectShare",
    "ProjectChatMember",
    "ChatJoinRequest",
    "Message",
    "MessageReceipt",
    "MessageReaction",
    "ProjectLastRead",
    "ShareAccessLog",
]
