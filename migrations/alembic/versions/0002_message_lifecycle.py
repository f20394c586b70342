"""Message lifecycle (edit, soft delete, pin, reactions) and share access logs

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

- messages gains edit, soft-delete and pin markers; deleted rows stay so
  replies to them keep resolving
- message_reactions holds one row per (message, participant, emoji)
- share_access_logs records visits through share links; one refreshed row per
  signed-in visitor and share, appended rows for anonymous visits
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MESSAGE_COLUMNS = [
    "is_edited",
    "edited_at",
    "is_deleted",
    "deleted_at",
    "deleted_by",
    "is_pinned",
    "pinned_at",
    "pinned_by",
]


def upgrade() -> None:
    op.add_column(
        "messages",
        sa.Column("is_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column("messages", sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column(
        "messages",
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column("messages", sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("messages", sa.Column("deleted_by", sa.Text(), nullable=True))
    op.add_column(
        "messages",
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column("messages", sa.Column("pinned_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("messages", sa.Column("pinned_by", sa.Uuid(), nullable=True))

    op.create_table(
        "message_reactions",
        sa.Column(
            "message_id",
            sa.Uuid(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("participant_id", sa.Text(), nullable=False),
        sa.Column("emoji", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint(
            "message_id", "participant_id", "emoji", name="pk_message_reactions"
        ),
    )

    op.create_table(
        "share_access_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "share_id",
            sa.Uuid(),
            sa.ForeignKey("project_shares.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("guest_identifier", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.Text(), nullable=True),
        sa.Column(
            "accessed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "uix_share_access_logs_share_user",
        "share_access_logs",
        ["share_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("user_id IS NOT NULL"),
        sqlite_where=sa.text("user_id IS NOT NULL"),
    )
    op.create_index("ix_share_access_logs_user", "share_access_logs", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_share_access_logs_user", table_name="share_access_logs")
    op.drop_index("uix_share_access_logs_share_user", table_name="share_access_logs")
    op.drop_table("share_access_logs")
    op.drop_table("message_reactions")
    for column in reversed(MESSAGE_COLUMNS):
        op.drop_column("messages", column)
