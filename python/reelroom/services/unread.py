"""Unread counter.

A read-side aggregate over messages and project_last_read watermarks. Nothing
is persisted besides the watermark itself, so counts always agree with the
message table at read time.

Counting rules, per project the user created or is an active member of:
- messages from other participants strictly after the user's watermark
- a missing watermark counts every such message
- membership system messages (joins, leaves, requests) are not counted

mark_project_read only ever moves the watermark forward.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reelroom.db.models import Message, Project, ProjectChatMember, ProjectLastRead
from reelroom.db.types import utc_now
from reelroom.identity import Registered
from reelroom.logging import get_logger
from reelroom.schemas.chat import ProjectReadOut, ProjectUnreadOut, UnreadCountsOut
from reelroom.services.projects import get_project_or_404, require_chat_access

logger = get_logger(__name__)

PREVIEW_LENGTH = 50


def _chat_project_ids(db: Session, user_id: UUID) -> list[UUID]:
    created = select(Project.id).where(Project.creator_id == user_id)
    joined = select(ProjectChatMember.project_id).where(
        ProjectChatMember.user_id == user_id,
        ProjectChatMember.is_active == True,  # noqa: E712
    )
    return list(db.scalars(created.union(joined)))


def _preview(content: str) -> str:
    return content[:PREVIEW_LENGTH]


def unread_for(db: Session, user_id: UUID) -> UnreadCountsOut:
    """Unread counts for every chat the user belongs to.

    Projects are ordered by most recent message first; projects without
    messages come last, by name.
    """
    project_ids = _chat_project_ids(db, user_id)
    if not project_ids:
        return UnreadCountsOut(projects=[], total_unread=0)

    participant_id = str(user_id)
    counted = and_(
        Message.project_id.in_(project_ids),
        Message.is_system_message == False,  # noqa: E712
        Message.sender_id != participant_id,
    )

    counts = dict(
        db.execute(
            select(Message.project_id, func.count(Message.id))
            .outerjoin(
                ProjectLastRead,
                and_(
                    ProjectLastRead.project_id == Message.project_id,
                    ProjectLastRead.user_id == user_id,
                ),
            )
            .where(
                counted,
                or_(
                    ProjectLastRead.last_read_at.is_(None),
                    Message.created_at > ProjectLastRead.last_read_at,
                ),
            )
            .group_by(Message.project_id)
        ).all()
    )

    projects = db.scalars(select(Project).where(Project.id.in_(project_ids))).all()

    summaries = []
    for project in projects:
        latest = db.scalar(
            select(Message)
            .where(
                Message.project_id == project.id,
                Message.is_system_message == False,  # noqa: E712
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )
        summaries.append(
            ProjectUnreadOut(
                project_id=project.id,
                project_name=project.name,
                unread_count=counts.get(project.id, 0),
                last_message_preview=_preview(latest.content) if latest else None,
                last_message_at=latest.created_at if latest else None,
            )
        )

    with_messages = sorted(
        (s for s in summaries if s.last_message_at is not None),
        key=lambda s: s.last_message_at,
        reverse=True,
    )
    without_messages = sorted(
        (s for s in summaries if s.last_message_at is None), key=lambda s: s.project_name
    )
    ordered = with_messages + without_messages

    return UnreadCountsOut(
        projects=ordered,
        total_unread=sum(s.unread_count for s in ordered),
    )


def _advance(row: ProjectLastRead, now: datetime) -> None:
    if now > row.last_read_at:
        row.last_read_at = now
        row.updated_at = now


def _get_watermark(db: Session, project_id: UUID, user_id: UUID) -> ProjectLastRead | None:
    return db.scalar(
        select(ProjectLastRead)
        .where(ProjectLastRead.project_id == project_id, ProjectLastRead.user_id == user_id)
        .with_for_update()
    )


def mark_project_read(
    db: Session, project_id: UUID, user_id: UUID, now: datetime | None = None
) -> ProjectReadOut:
    """Move the user's watermark for a project to now, never backward.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError(E_CHAT_ACCESS_DENIED): If the user has no chat access.
    """
    now = now or utc_now()
    get_project_or_404(db, project_id)
    require_chat_access(db, project_id, Registered(user_id))

    row = _get_watermark(db, project_id, user_id)
    if row is None:
        row = ProjectLastRead(
            project_id=project_id,
            user_id=user_id,
            last_read_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        try:
            db.flush()
        except IntegrityError:
            # Lost race: a concurrent mark-read inserted the row
            db.rollback()
            row = _get_watermark(db, project_id, user_id)
            if row is None:
                raise
            _advance(row, now)
    else:
        _advance(row, now)

    db.commit()
    logger.info("project_marked_read", last_read_at=row.last_read_at.isoformat())

    return ProjectReadOut(project_id=project_id, user_id=user_id, last_read_at=row.last_read_at)
