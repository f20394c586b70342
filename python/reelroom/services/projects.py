"""Project lookups shared by the chat services.

- Project existence (E_PROJECT_NOT_FOUND)
- Chat access enforcement on top of reelroom.auth.permissions
- Active membership lookup and last-seen bookkeeping
- Display names for participants (profiles are owned elsewhere; read only)
"""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from reelroom.auth.permissions import can_access_chat
from reelroom.db.models import Profile, Project, ProjectChatMember
from reelroom.errors import ApiErrorCode, ForbiddenError, NotFoundError
from reelroom.identity import Guest, Identity, Registered, parse_participant_id
from reelroom.logging import set_project_context

FALLBACK_DISPLAY_NAME = "User"


def get_project_or_404(db: Session, project_id: UUID) -> Project:
    """Load a project.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
    """
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError(ApiErrorCode.E_PROJECT_NOT_FOUND, "Project not found")
    set_project_context(str(project_id))
    return project


def require_chat_access(db: Session, project_id: UUID, identity: Identity) -> None:
    """Raise unless the identity is the creator or an active member.

    Raises:
        ForbiddenError(E_CHAT_ACCESS_DENIED)
    """
    if not can_access_chat(db, project_id, identity):
        raise ForbiddenError(ApiErrorCode.E_CHAT_ACCESS_DENIED, "You are not a member of this chat")


def _identity_clause(identity: Identity):
    if isinstance(identity, Registered):
        return ProjectChatMember.user_id == identity.user_id
    return ProjectChatMember.guest_name == identity.name


def get_active_member(
    db: Session, project_id: UUID, identity: Identity
) -> ProjectChatMember | None:
    """Return the identity's active membership, if any."""
    return db.scalar(
        select(ProjectChatMember).where(
            ProjectChatMember.project_id == project_id,
            _identity_clause(identity),
            ProjectChatMember.is_active == True,  # noqa: E712
        )
    )


def has_removed_membership(db: Session, project_id: UUID, identity: Identity) -> bool:
    """True iff the identity was a member and has been removed."""
    row = db.scalar(
        select(ProjectChatMember.id)
        .where(
            ProjectChatMember.project_id == project_id,
            _identity_clause(identity),
            ProjectChatMember.is_active == False,  # noqa: E712
        )
        .limit(1)
    )
    return row is not None


def touch_last_seen(db: Session, project_id: UUID, identity: Identity, now: datetime) -> None:
    """Bump last_seen_at on the identity's active membership (no commit)."""
    member = get_active_member(db, project_id, identity)
    if member is not None:
        member.last_seen_at = now


def profile_display_name(profile: Profile | None) -> str:
    """full_name, then email, then a generic fallback."""
    if profile is None:
        return FALLBACK_DISPLAY_NAME
    return profile.full_name or profile.email or FALLBACK_DISPLAY_NAME


def display_names(db: Session, user_ids: Iterable[UUID]) -> dict[UUID, str]:
    """Resolve display names for registered users in one query."""
    ids = set(user_ids)
    if not ids:
        return {}
    profiles = {p.id: p for p in db.scalars(select(Profile).where(Profile.id.in_(ids)))}
    return {user_id: profile_display_name(profiles.get(user_id)) for user_id in ids}


def identity_display_name(db: Session, identity: Identity) -> str:
    """Display name for a single identity."""
    if isinstance(identity, Guest):
        return identity.name
    return display_names(db, [identity.user_id])[identity.user_id]


def participant_display_names(db: Session, participant_ids: Iterable[str]) -> dict[str, str]:
    """Display names keyed by participant id (registered or guest)."""
    identities = {pid: parse_participant_id(pid) for pid in set(participant_ids)}
    names = display_names(
        db, [i.user_id for i in identities.values() if isinstance(i, Registered)]
    )
    return {
        pid: names[identity.user_id] if isinstance(identity, Registered) else identity.name
        for pid, identity in identities.items()
    }
