"""SQLAlchemy ORM models for Reelroom chat.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Enums are Python str enums backed by CHECK constraints on Text columns, and
column types are portable so the schema runs on Postgres and SQLite alike.

Projects and profiles are owned by the wider product; they are mapped here
only so chat can read ids, names and the creator.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    func,
    text,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from reelroom.db.types import UTCDateTime, utc_now


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class MessageStatus(str, PyEnum):
    """Legacy aggregate message status, derived from receipts."""

    sent = "sent"
    delivered = "delivered"
    read = "read"


class ReceiptState(str, PyEnum):
    """Per-participant receipt kinds."""

    delivered = "delivered"
    read = "read"


class SystemMessageType(str, PyEnum):
    """Membership events rendered inline in the chat."""

    join = "join"
    leave = "leave"
    join_request = "join_request"
    join_approved = "join_approved"


class JoinRequestStatus(str, PyEnum):
    """Join request lifecycle.

    pending -> approved | rejected; both are terminal.
    """

    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# =============================================================================
# Collaborator models (read-only here)
# =============================================================================


class Profile(Base):
    """User profile. The id matches the Supabase auth user id (sub claim)."""

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )


class Project(Base):
    """Video review project. Only the fields chat needs are mapped."""

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    creator_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    chat_requires_approval: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )


# =============================================================================
# Membership Registry
# =============================================================================


class ProjectShare(Base):
    """Share link granting view/edit/chat capabilities on a project."""

    __tablename__ = "project_shares"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    creator_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    share_token: Mapped[str] = mapped_column(Text, nullable=False)
    can_view: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    can_edit: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    can_chat: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("share_token", name="uq_project_shares_token"),)

    project: Mapped["Project"] = relationship("Project")


class ProjectChatMember(Base):
    """A registered user or guest in a project's chat.

    Never hard-deleted: removal flips is_active and records who/when.
    """

    __tablename__ = "project_chat_members"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    guest_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    share_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("project_shares.id", ondelete="SET NULL"), nullable=True
    )
    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    removed_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    removed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (guest_name IS NULL)",
            name="ck_project_chat_members_identity",
        ),
        # One active membership per identity; removed rows are history
        Index(
            "uix_project_chat_members_active_user",
            "project_id",
            "user_id",
            unique=True,
            postgresql_where=text("is_active AND user_id IS NOT NULL"),
            sqlite_where=text("is_active = 1 AND user_id IS NOT NULL"),
        ),
        Index(
            "uix_project_chat_members_active_guest",
            "project_id",
            "guest_name",
            unique=True,
            postgresql_where=text("is_active AND guest_name IS NOT NULL"),
            sqlite_where=text("is_active = 1 AND guest_name IS NOT NULL"),
        ),
        Index("ix_project_chat_members_user", "user_id"),
    )

    share: Mapped["ProjectShare | None"] = relationship("ProjectShare")


class ChatJoinRequest(Base):
    """Request to join a chat that is gated by approval."""

    __tablename__ = "chat_join_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    guest_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        Text, default=JoinRequestStatus.pending.value, server_default="pending", nullable=False
    )
    requested_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    responded_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (guest_name IS NULL)",
            name="ck_chat_join_requests_identity",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_chat_join_requests_status",
        ),
        CheckConstraint(
            "(status = 'pending') = (responded_at IS NULL)",
            name="ck_chat_join_requests_responded_at",
        ),
        Index(
            "uix_chat_join_requests_pending_user",
            "project_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending' AND user_id IS NOT NULL"),
            sqlite_where=text("status = 'pending' AND user_id IS NOT NULL"),
        ),
        Index(
            "uix_chat_join_requests_pending_guest",
            "project_id",
            "guest_name",
            unique=True,
            postgresql_where=text("status = 'pending' AND guest_name IS NOT NULL"),
            sqlite_where=text("status = 'pending' AND guest_name IS NOT NULL"),
        ),
    )


class ShareAccessLog(Base):
    """A visit to a project through a share link.

    Signed-in visitors have one row per share, refreshed on every visit.
    Anonymous visits append a row keyed by client address.
    """

    __tablename__ = "share_access_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    share_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("project_shares.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    guest_identifier: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    accessed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index(
            "uix_share_access_logs_share_user",
            "share_id",
            "user_id",
            unique=True,
            postgresql_where=text("user_id IS NOT NULL"),
            sqlite_where=text("user_id IS NOT NULL"),
        ),
        Index("ix_share_access_logs_user", "user_id"),
    )


# =============================================================================
# Message Store
# =============================================================================


class Message(Base):
    """A chat message in a project.

    sender_id is a participant id (user UUID string or "guest:<name>").
    reply_to_message_id is a weak reference: no foreign key, may dangle.
    Deletion is soft: the row stays so replies keep resolving, with the
    content replaced.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, default=MessageStatus.sent.value, server_default="sent", nullable=False
    )
    reply_to_message_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    is_system_message: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    system_message_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    system_message_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    is_edited: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    edited_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_pinned: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    pinned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    pinned_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('sent', 'delivered', 'read')",
            name="ck_messages_status",
        ),
        CheckConstraint(
            "system_message_type IS NULL "
            "OR system_message_type IN ('join', 'leave', 'join_request', 'join_approved')",
            name="ck_messages_system_message_type",
        ),
        Index("ix_messages_project_created", "project_id", "created_at"),
    )

    receipts: Mapped[list["MessageReceipt"]] = relationship(
        "MessageReceipt",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    reactions: Mapped[list["MessageReaction"]] = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class MessageReceipt(Base):
    """Delivery or read marker for one participant on one message.

    Together these rows are the delivered_to / read_by sets.
    """

    __tablename__ = "message_receipts"

    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[str] = mapped_column(Text, nullable=False)
    state: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        PrimaryKeyConstraint("message_id", "participant_id", "state", name="pk_message_receipts"),
        CheckConstraint(
            "state IN ('delivered', 'read')",
            name="ck_message_receipts_state",
        ),
    )

    message: Mapped["Message"] = relationship("Message", back_populates="receipts")


class MessageReaction(Base):
    """One participant's emoji reaction on a message.

    Reacting again with the same emoji removes the row.
    """

    __tablename__ = "message_reactions"

    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[str] = mapped_column(Text, nullable=False)
    emoji: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        PrimaryKeyConstraint(
            "message_id", "participant_id", "emoji", name="pk_message_reactions"
        ),
    )

    message: Mapped["Message"] = relationship("Message", back_populates="reactions")


# =============================================================================
# Unread Counter
# =============================================================================


class ProjectLastRead(Base):
    """Per (project, user) read watermark."""

    __tablename__ = "project_last_read"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    last_read_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_last_read_project_user"),
    )
