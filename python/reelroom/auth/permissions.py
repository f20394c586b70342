"""Authorization predicates for project chat.

These predicates are the single source of truth for chat access logic.
They are used by services to enforce access control consistently.

All functions:
- Accept an explicit SQLAlchemy Session
- Return booleans only (no HTTP exceptions)
- Treat a missing project as "no access"

Chat roles:
- The project creator always has chat access (reported as "admin")
- Any identity with an active project_chat_members row has chat access
- Removed (inactive) members have no access until re-admitted
"""

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from reelroom.db.models import Project, ProjectChatMember
from reelroom.identity import Identity, Registered


def is_project_creator(session: Session, project_id: UUID, user_id: UUID) -> bool:
    """True iff user_id created the project."""
    creator_id = session.scalar(select(Project.creator_id).where(Project.id == project_id))
    return creator_id is not None and creator_id == user_id


def is_active_member(session: Session, project_id: UUID, identity: Identity) -> bool:
    """True iff the identity has an active chat membership in the project."""
    if isinstance(identity, Registered):
        identity_clause = ProjectChatMember.user_id == identity.user_id
    else:
        identity_clause = ProjectChatMember.guest_name == identity.name

    return bool(
        session.scalar(
            select(
                exists().where(
                    ProjectChatMember.project_id == project_id,
                    identity_clause,
                    ProjectChatMember.is_active == True,  # noqa: E712
                )
            )
        )
    )


def can_access_chat(session: Session, project_id: UUID, identity: Identity) -> bool:
    """True iff the identity may read and post in the project's chat.

    Creator OR active member. Guests are never creators.
    """
    if isinstance(identity, Registered) and is_project_creator(
        session, project_id, identity.user_id
    ):
        return True
    return is_active_member(session, project_id, identity)


def can_moderate_chat(session: Session, project_id: UUID, user_id: UUID) -> bool:
    """True iff the user may remove members and manage share links.

    Only the project creator moderates.
    """
    return is_project_creator(session, project_id, user_id)


def can_respond_to_join_requests(session: Session, project_id: UUID, user_id: UUID) -> bool:
    """True iff the user may approve or reject join requests.

    Any registered participant with chat access may respond.
    """
    return can_access_chat(session, project_id, Registered(user_id))
