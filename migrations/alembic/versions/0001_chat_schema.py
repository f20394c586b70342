"""Chat schema: projects, shares, chat members, join requests, messages, receipts, watermarks

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Column types are portable (Uuid, JSON, timezone-aware DateTime) so the same
revision runs on Postgres and on SQLite for local work and tests. Partial
unique indexes carry both postgresql_where and sqlite_where.

profiles and projects are owned by the wider product; they are created here
with only the columns chat reads.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, nullable: bool = False, default_now: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now() if default_now else None,
    )


def _partial_unique(name: str, table: str, columns: list[str], where: str, sqlite_where: str):
    op.create_index(
        name,
        table,
        columns,
        unique=True,
        postgresql_where=sa.text(where),
        sqlite_where=sa.text(sqlite_where),
    )


def upgrade() -> None:
    # ==========================================================================
    # Collaborator tables
    # ==========================================================================
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("creator_id", sa.Uuid(), nullable=False),
        sa.Column(
            "chat_requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        _timestamp("created_at"),
    )
    op.create_index("ix_projects_creator_id", "projects", ["creator_id"])

    # ==========================================================================
    # Share links
    # ==========================================================================
    op.create_table(
        "project_shares",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("creator_id", sa.Uuid(), nullable=False),
        sa.Column("share_token", sa.Text(), nullable=False),
        sa.Column("can_view", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_edit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_chat", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("expires_at", nullable=True, default_now=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("share_token", name="uq_project_shares_token"),
    )
    op.create_index("ix_project_shares_project_id", "project_shares", ["project_id"])

    # ==========================================================================
    # Membership registry
    # ==========================================================================
    op.create_table(
        "project_chat_members",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("guest_name", sa.Text(), nullable=True),
        sa.Column(
            "share_id",
            sa.Uuid(),
            sa.ForeignKey("project_shares.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _timestamp("joined_at"),
        _timestamp("last_seen_at"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("removed_by", sa.Uuid(), nullable=True),
        _timestamp("removed_at", nullable=True, default_now=False),
        sa.CheckConstraint(
            "(user_id IS NULL) <> (guest_name IS NULL)",
            name="ck_project_chat_members_identity",
        ),
    )
    _partial_unique(
        "uix_project_chat_members_active_user",
        "project_chat_members",
        ["project_id", "user_id"],
        "is_active AND user_id IS NOT NULL",
        "is_active = 1 AND user_id IS NOT NULL",
    )
    _partial_unique(
        "uix_project_chat_members_active_guest",
        "project_chat_members",
        ["project_id", "guest_name"],
        "is_active AND guest_name IS NOT NULL",
        "is_active = 1 AND guest_name IS NOT NULL",
    )
    op.create_index("ix_project_chat_members_user", "project_chat_members", ["user_id"])

    op.create_table(
        "chat_join_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("guest_name", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        _timestamp("requested_at"),
        _timestamp("responded_at", nullable=True, default_now=False),
        sa.Column("responded_by", sa.Uuid(), nullable=True),
        sa.CheckConstraint(
            "(user_id IS NULL) <> (guest_name IS NULL)",
            name="ck_chat_join_requests_identity",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_chat_join_requests_status",
        ),
        sa.CheckConstraint(
            "(status = 'pending') = (responded_at IS NULL)",
            name="ck_chat_join_requests_responded_at",
        ),
    )
    _partial_unique(
        "uix_chat_join_requests_pending_user",
        "chat_join_requests",
        ["project_id", "user_id"],
        "status = 'pending' AND user_id IS NOT NULL",
        "status = 'pending' AND user_id IS NOT NULL",
    )
    _partial_unique(
        "uix_chat_join_requests_pending_guest",
        "chat_join_requests",
        ["project_id", "guest_name"],
        "status = 'pending' AND guest_name IS NOT NULL",
        "status = 'pending' AND guest_name IS NOT NULL",
    )

    # ==========================================================================
    # Message store
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="sent"),
        # Weak reference: no foreign key, may dangle
        sa.Column("reply_to_message_id", sa.Uuid(), nullable=True),
        sa.Column("is_system_message", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("system_message_type", sa.Text(), nullable=True),
        sa.Column("system_message_data", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('sent', 'delivered', 'read')",
            name="ck_messages_status",
        ),
        sa.CheckConstraint(
            "system_message_type IS NULL "
            "OR system_message_type IN ('join', 'leave', 'join_request', 'join_approved')",
            name="ck_messages_system_message_type",
        ),
    )
    op.create_index("ix_messages_project_created", "messages", ["project_id", "created_at"])

    op.create_table(
        "message_receipts",
        sa.Column(
            "message_id",
            sa.Uuid(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("participant_id", sa.Text(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint(
            "message_id", "participant_id", "state", name="pk_message_receipts"
        ),
        sa.CheckConstraint(
            "state IN ('delivered', 'read')",
            name="ck_message_receipts_state",
        ),
    )

    # ==========================================================================
    # Unread counter
    # ==========================================================================
    op.create_table(
        "project_last_read",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_last_read_project_user"),
    )


def downgrade() -> None:
    op.drop_table("project_last_read")
    op.drop_table("message_receipts")
    op.drop_index("ix_messages_project_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("uix_chat_join_requests_pending_guest", table_name="chat_join_requests")
    op.drop_index("uix_chat_join_requests_pending_user", table_name="chat_join_requests")
    op.drop_table("chat_join_requests")
    op.drop_index("ix_project_chat_members_user", table_name="project_chat_members")
    op.drop_index("uix_project_chat_members_active_guest", table_name="project_chat_members")
    op.drop_index("uix_project_chat_members_active_user", table_name="project_chat_members")
    op.drop_table("project_chat_members")
    op.drop_index("ix_project_shares_project_id", table_name="project_shares")
    op.drop_table("project_shares")
    op.drop_index("ix_projects_creator_id", table_name="projects")
    op.drop_table("projects")
    op.drop_table("profiles")
