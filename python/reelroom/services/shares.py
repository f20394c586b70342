"""Share link service layer.

Share links grant view/edit/chat capabilities on a project to anyone holding
the token. Only the project creator creates and lists links; only the link's
creator changes or deletes it. Deleting a link keeps chat history: members
who joined through it keep their rows with share_id nulled (FK SET NULL).

Token lookup is public and distinguishes:
- unknown token -> E_SHARE_NOT_FOUND (404)
- deactivated -> E_SHARE_INACTIVE (403)
- past expires_at -> E_SHARE_EXPIRED (403)

Visits through a link are logged for the project creator, except the
creator's own. A signed-in visitor has one row per share, refreshed on every
visit; anonymous visits append rows keyed by client address. Those rows (and
share-link chat memberships) make up a user's "shared with me" list.
"""

import secrets
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reelroom.auth.permissions import can_moderate_chat
from reelroom.db.models import Project, ProjectChatMember, ProjectShare, ShareAccessLog
from reelroom.db.types import utc_now
from reelroom.errors import ApiErrorCode, ForbiddenError, NotFoundError
from reelroom.logging import get_logger
from reelroom.schemas.membership import (
    CreateShareRequest,
    MySharedProjectOut,
    ShareAccessLogOut,
    ShareAccessOut,
    SharedProjectOut,
    ShareOut,
    UpdateShareRequest,
)
from reelroom.services.projects import display_names

logger = get_logger(__name__)

DEFAULT_TOKEN_BYTES = 24  # 32 url-safe characters
TOKEN_ATTEMPTS = 3


def share_is_expired(share: ProjectShare, now: datetime) -> bool:
    return share.expires_at is not None and share.expires_at <= now


def generate_share_token(token_bytes: int = DEFAULT_TOKEN_BYTES) -> str:
    """Random url-safe token."""
    return secrets.token_urlsafe(token_bytes)


def share_to_out(share: ProjectShare) -> ShareOut:
    """Convert ProjectShare ORM model to ShareOut schema."""
    return ShareOut.model_validate(share)


def _get_share_for_owner_or_404(db: Session, share_id: UUID, viewer_id: UUID) -> ProjectShare:
    """Load a share the viewer created.

    Raises:
        NotFoundError(E_SHARE_NOT_FOUND): Missing, or created by someone else.
    """
    share = db.get(ProjectShare, share_id)
    if share is None or share.creator_id != viewer_id:
        raise NotFoundError(ApiErrorCode.E_SHARE_NOT_FOUND, "Share not found")
    return share


def _require_project_owner(db: Session, project_id: UUID, viewer_id: UUID) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError(ApiErrorCode.E_PROJECT_NOT_FOUND, "Project not found")
    if not can_moderate_chat(db, project_id, viewer_id):
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Only the project creator can manage shares")
    return project


# =============================================================================
# Service Functions
# =============================================================================


def create_share(
    db: Session,
    project_id: UUID,
    viewer_id: UUID,
    request: CreateShareRequest,
    token_bytes: int = DEFAULT_TOKEN_BYTES,
) -> ShareOut:
    """Create a share link for a project.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError: If the viewer is not the project creator.
    """
    _require_project_owner(db, project_id, viewer_id)
    now = utc_now()

    for attempt in range(TOKEN_ATTEMPTS):
        share = ProjectShare(
            project_id=project_id,
            creator_id=viewer_id,
            share_token=generate_share_token(token_bytes),
            can_view=request.can_view,
            can_edit=request.can_edit,
            can_chat=request.can_chat,
            is_active=True,
            expires_at=request.expires_at,
            created_at=now,
            updated_at=now,
        )
        db.add(share)
        try:
            db.flush()
        except IntegrityError:
            # Token collision; try a fresh token
            db.rollback()
            logger.warning("share_token_collision", attempt=attempt + 1)
            continue
        db.commit()
        logger.info("share_created", share_id=str(share.id), can_chat=share.can_chat)
        return share_to_out(share)

    raise RuntimeError("Could not generate a unique share token")


def list_shares(db: Session, project_id: UUID, viewer_id: UUID) -> list[ShareOut]:
    """List a project's share links, newest first.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError: If the viewer is not the project creator.
    """
    _require_project_owner(db, project_id, viewer_id)
    shares = db.scalars(
        select(ProjectShare)
        .where(ProjectShare.project_id == project_id)
        .order_by(ProjectShare.created_at.desc(), ProjectShare.id)
    )
    return [share_to_out(s) for s in shares]


def update_share(
    db: Session, share_id: UUID, viewer_id: UUID, request: UpdateShareRequest
) -> ShareOut:
    """Change capability flags, active state or expiry of a share link.

    Raises:
        NotFoundError(E_SHARE_NOT_FOUND): Missing, or created by someone else.
    """
    share = _get_share_for_owner_or_404(db, share_id, viewer_id)

    changes = request.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field != "expires_at":
            continue
        setattr(share, field, value)
    share.updated_at = utc_now()

    db.commit()
    logger.info("share_updated", share_id=str(share_id), fields=sorted(changes))
    return share_to_out(share)


def delete_share(db: Session, share_id: UUID, viewer_id: UUID) -> None:
    """Delete a share link. Memberships created through it survive.

    Raises:
        NotFoundError(E_SHARE_NOT_FOUND): Missing, or created by someone else.
    """
    share = _get_share_for_owner_or_404(db, share_id, viewer_id)
    db.delete(share)
    db.commit()
    logger.info("share_deleted", share_id=str(share_id))


def get_share_by_token(db: Session, token: str, now: datetime | None = None) -> ProjectShare:
    """Resolve a share token for public access.

    Raises:
        NotFoundError(E_SHARE_NOT_FOUND): Unknown token.
        ForbiddenError(E_SHARE_INACTIVE): Link was deactivated.
        ForbiddenError(E_SHARE_EXPIRED): Link has expired.
    """
    share = db.scalar(select(ProjectShare).where(ProjectShare.share_token == token))
    if share is None:
        raise NotFoundError(ApiErrorCode.E_SHARE_NOT_FOUND, "Share link not found")
    if not share.is_active:
        raise ForbiddenError(ApiErrorCode.E_SHARE_INACTIVE, "This share link is no longer active")
    if share_is_expired(share, now or utc_now()):
        raise ForbiddenError(ApiErrorCode.E_SHARE_EXPIRED, "This share link has expired")
    return share


def get_shared_project(db: Session, token: str) -> SharedProjectOut:
    """What a visitor with a share token can see about the project."""
    share = get_share_by_token(db, token)
    project = db.get(Project, share.project_id)
    if project is None:
        raise NotFoundError(ApiErrorCode.E_PROJECT_NOT_FOUND, "Project not found")
    return SharedProjectOut(
        share_id=share.id,
        project_id=project.id,
        project_name=project.name,
        can_view=share.can_view,
        can_edit=share.can_edit,
        can_chat=share.can_chat,
        chat_requires_approval=project.chat_requires_approval,
    )


# =============================================================================
# Share access log
# =============================================================================


def _get_user_access(db: Session, share_id: UUID, user_id: UUID) -> ShareAccessLog | None:
    return db.scalar(
        select(ShareAccessLog).where(
            ShareAccessLog.share_id == share_id, ShareAccessLog.user_id == user_id
        )
    )


def log_share_access(
    db: Session,
    token: str,
    user_id: UUID | None,
    user_agent: str | None = None,
    ip_address: str | None = None,
    now: datetime | None = None,
) -> ShareAccessOut:
    """Record a visit through a share link.

    Raises:
        NotFoundError(E_SHARE_NOT_FOUND): Unknown token.
        ForbiddenError(E_SHARE_INACTIVE | E_SHARE_EXPIRED): Unusable link.
    """
    now = now or utc_now()
    share = get_share_by_token(db, token, now)
    project = db.get(Project, share.project_id)
    if user_id is not None and project is not None and project.creator_id == user_id:
        return ShareAccessOut(logged=False)

    if user_id is None:
        db.add(
            ShareAccessLog(
                share_id=share.id,
                guest_identifier=ip_address or "unknown",
                user_agent=user_agent,
                ip_address=ip_address,
                accessed_at=now,
            )
        )
        db.commit()
        logger.info("share_access_logged", share_id=str(share.id), signed_in=False)
        return ShareAccessOut(logged=True)

    entry = _get_user_access(db, share.id, user_id)
    if entry is None:
        entry = ShareAccessLog(share_id=share.id, user_id=user_id)
        db.add(entry)
        try:
            db.flush()
        except IntegrityError:
            # Lost race: a concurrent visit created the row
            db.rollback()
            entry = _get_user_access(db, share.id, user_id)
            if entry is None:
                raise
    entry.accessed_at = now
    entry.user_agent = user_agent
    entry.ip_address = ip_address
    db.commit()

    logger.info("share_access_logged", share_id=str(share.id), signed_in=True)
    return ShareAccessOut(logged=True)


def list_share_access_logs(
    db: Session, project_id: UUID, viewer_id: UUID
) -> list[ShareAccessLogOut]:
    """Visits through any of a project's share links, most recent first.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError: If the viewer is not the project creator.
    """
    _require_project_owner(db, project_id, viewer_id)
    entries = list(
        db.scalars(
            select(ShareAccessLog)
            .join(ProjectShare, ProjectShare.id == ShareAccessLog.share_id)
            .where(ProjectShare.project_id == project_id)
            .order_by(ShareAccessLog.accessed_at.desc(), ShareAccessLog.id)
        )
    )
    names = display_names(db, [e.user_id for e in entries if e.user_id is not None])
    return [
        ShareAccessLogOut(
            id=e.id,
            share_id=e.share_id,
            user_id=e.user_id,
            display_name=names.get(e.user_id) if e.user_id is not None else None,
            guest_identifier=e.guest_identifier,
            user_agent=e.user_agent,
            ip_address=e.ip_address,
            accessed_at=e.accessed_at,
        )
        for e in entries
    ]


def list_my_shared_projects(
    db: Session, user_id: UUID, now: datetime | None = None
) -> list[MySharedProjectOut]:
    """Projects shared with the user, newest project first.

    A project counts when the user visited it through a usable share link or
    holds an active chat membership that came through one. Projects the user
    created are never listed.
    """
    now = now or utc_now()
    found: dict[UUID, tuple[UUID | None, datetime | None]] = {}

    visits = db.execute(
        select(ProjectShare, ShareAccessLog.accessed_at)
        .join(ShareAccessLog, ShareAccessLog.share_id == ProjectShare.id)
        .where(ShareAccessLog.user_id == user_id, ProjectShare.is_active.is_(True))
        .order_by(ShareAccessLog.accessed_at)
    )
    for share, accessed_at in visits:
        if not share_is_expired(share, now):
            found[share.project_id] = (share.id, accessed_at)

    memberships = db.execute(
        select(ProjectChatMember.project_id, ProjectChatMember.share_id).where(
            ProjectChatMember.user_id == user_id,
            ProjectChatMember.is_active.is_(True),
            ProjectChatMember.share_id.is_not(None),
        )
    )
    for project_id, share_id in memberships:
        found.setdefault(project_id, (share_id, None))

    if not found:
        return []

    projects = list(
        db.scalars(
            select(Project)
            .where(Project.id.in_(list(found)), Project.creator_id != user_id)
            .order_by(Project.created_at.desc(), Project.id)
        )
    )
    creators = display_names(db, [p.creator_id for p in projects])
    return [
        MySharedProjectOut(
            project_id=p.id,
            project_name=p.name,
            creator_id=p.creator_id,
            creator_name=creators[p.creator_id],
            share_id=found[p.id][0],
            last_accessed_at=found[p.id][1],
        )
        for p in projects
    ]
