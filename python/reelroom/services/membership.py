"""Chat membership service layer (the membership registry).

Covers joining, leaving, removal, join requests and access status.

Join rules:
- Join is idempotent: an existing active membership is returned unchanged
- Concurrent joins converge on one row via the partial unique indexes on
  active memberships; the loser of the race re-fetches the winner's row
- Share-link joins require an active, unexpired share with can_chat
- The project creator may join directly (backfill) but never through a share
  link, so the creator is never listed as a shared participant
- Guests can only arrive through a share link
- When the project requires approval, non-creators go through a join request
- Removed members cannot rejoin on their own; an approved request re-admits them

Join request lifecycle: pending -> approved | rejected, terminal thereafter.
The transition is a conditional UPDATE on status='pending', so two concurrent
responders cannot both succeed.

Removal is a soft delete (is_active=false plus removed_by/removed_at).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reelroom.auth.permissions import can_moderate_chat, can_respond_to_join_requests
from reelroom.db.models import (
    ChatJoinRequest,
    JoinRequestStatus,
    Message,
    Project,
    ProjectChatMember,
    ProjectShare,
    SystemMessageType,
)
from reelroom.db.types import utc_now
from reelroom.errors import (
    ApiErrorCode,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from reelroom.identity import Guest, Identity, Registered, identity_columns, identity_from_fields
from reelroom.logging import get_logger
from reelroom.schemas.membership import ChatAccessStatusOut, ChatMemberOut, JoinRequestOut
from reelroom.services import messages as messages_service
from reelroom.services.projects import (
    display_names,
    get_active_member,
    get_project_or_404,
    has_removed_membership,
    identity_display_name,
    require_chat_access,
)
from reelroom.services.realtime import (
    CHAT_JOIN_REQUEST,
    CHAT_MEMBER_JOINED,
    CHAT_MEMBER_REMOVED,
    CHAT_REQUEST_APPROVED,
    CHAT_REQUEST_REJECTED,
    RealtimePublisher,
    publish_event,
)
from reelroom.services.shares import share_is_expired

logger = get_logger(__name__)


# =============================================================================
# Helper Functions
# =============================================================================


def _member_display_name(member: ProjectChatMember, names: dict[UUID, str]) -> str:
    if member.user_id is not None:
        return names[member.user_id]
    return member.guest_name or ""


def members_to_out(db: Session, members: list[ProjectChatMember]) -> list[ChatMemberOut]:
    """Convert ProjectChatMember rows to ChatMemberOut with display names."""
    names = display_names(db, [m.user_id for m in members if m.user_id is not None])
    return [
        ChatMemberOut(
            id=m.id,
            project_id=m.project_id,
            user_id=m.user_id,
            guest_name=m.guest_name,
            display_name=_member_display_name(m, names),
            share_id=m.share_id,
            joined_at=m.joined_at,
            last_seen_at=m.last_seen_at,
            is_active=m.is_active,
            removed_by=m.removed_by,
            removed_at=m.removed_at,
        )
        for m in members
    ]


def member_to_out(db: Session, member: ProjectChatMember) -> ChatMemberOut:
    return members_to_out(db, [member])[0]


def join_request_to_out(db: Session, request: ChatJoinRequest) -> JoinRequestOut:
    """Convert ChatJoinRequest ORM model to JoinRequestOut schema."""
    identity = identity_from_fields(request.user_id, request.guest_name)
    return JoinRequestOut(
        id=request.id,
        project_id=request.project_id,
        user_id=request.user_id,
        guest_name=request.guest_name,
        display_name=identity_display_name(db, identity),
        status=request.status,
        requested_at=request.requested_at,
        responded_at=request.responded_at,
        responded_by=request.responded_by,
    )


def _is_creator(project: Project, identity: Identity) -> bool:
    return isinstance(identity, Registered) and identity.user_id == project.creator_id


def _get_chat_share(db: Session, project: Project, share_id: UUID, now: datetime) -> ProjectShare:
    """Load a share usable for chat in this project.

    Raises:
        ForbiddenError(E_SHARE_CHAT_FORBIDDEN): Missing, wrong project, inactive,
            expired, or chat not enabled.
    """
    share = db.get(ProjectShare, share_id)
    if (
        share is None
        or share.project_id != project.id
        or not share.is_active
        or share_is_expired(share, now)
        or not share.can_chat
    ):
        raise ForbiddenError(
            ApiErrorCode.E_SHARE_CHAT_FORBIDDEN, "This share link does not allow chat"
        )
    return share


def _identity_filter(model, identity: Identity):
    if isinstance(identity, Registered):
        return model.user_id == identity.user_id
    return model.guest_name == identity.name


def _get_pending_request(
    db: Session, project_id: UUID, identity: Identity
) -> ChatJoinRequest | None:
    return db.scalar(
        select(ChatJoinRequest).where(
            ChatJoinRequest.project_id == project_id,
            _identity_filter(ChatJoinRequest, identity),
            ChatJoinRequest.status == JoinRequestStatus.pending.value,
        )
    )


def _create_membership(
    db: Session,
    project: Project,
    identity: Identity,
    share_id: UUID | None,
    now: datetime,
    announce: SystemMessageType | None = SystemMessageType.join,
) -> tuple[ProjectChatMember, Message | None]:
    """Insert an active membership, converging with concurrent inserts.

    Returns:
        (member, system_message). system_message is None when nothing was
        announced, including when a concurrent request created the row first.
    """
    user_id, guest_name = identity_columns(identity)
    member = ProjectChatMember(
        project_id=project.id,
        user_id=user_id,
        guest_name=guest_name,
        share_id=share_id,
        joined_at=now,
        last_seen_at=now,
        is_active=True,
    )
    db.add(member)
    try:
        db.flush()
    except IntegrityError:
        # Lost race: another request inserted the active membership first
        db.rollback()
        existing = get_active_member(db, project.id, identity)
        if existing is None:
            raise
        logger.info("chat_member_join_race_resolved", member_id=str(existing.id))
        return existing, None

    system_message = None
    if announce is not None:
        name = identity_display_name(db, identity)
        text = {
            SystemMessageType.join: f"{name} joined the chat",
            SystemMessageType.join_approved: f"{name} was approved to join the chat",
        }[announce]
        system_message = messages_service.append_system_message(
            db,
            project.id,
            actor=identity,
            message_type=announce,
            content=text,
            data={
                "user_name": name,
                "user_id": str(user_id) if user_id else None,
                "guest_name": guest_name,
                "member_id": str(member.id),
            },
            now=now,
        )
    db.commit()

    logger.info(
        "chat_member_joined",
        member_id=str(member.id),
        via_share=share_id is not None,
        guest=guest_name is not None,
    )
    return member, system_message


def _publish_join(
    db: Session,
    publisher: RealtimePublisher | None,
    member: ProjectChatMember,
    system_message: Message | None,
) -> ChatMemberOut:
    out = member_to_out(db, member)
    if system_message is not None:
        publish_event(publisher, member.project_id, CHAT_MEMBER_JOINED, out.model_dump(mode="json"))
        messages_service.publish_new_message(db, publisher, system_message)
    return out


# =============================================================================
# Service Functions
# =============================================================================


def join_chat(
    db: Session,
    project_id: UUID,
    identity: Identity,
    share_id: UUID | None = None,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMemberOut:
    """Join a project's chat, directly or through a share link.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError(E_SHARE_CHAT_FORBIDDEN): Share unusable for chat, or a guest
            joining without a share.
        ConflictError(E_CREATOR_SHARE_JOIN): The creator joining through a share link.
        ForbiddenError(E_JOIN_APPROVAL_REQUIRED): Project requires approval.
        ForbiddenError(E_CHAT_MEMBER_REMOVED): Identity was removed from the chat.
    """
    now = now or utc_now()
    project = get_project_or_404(db, project_id)
    is_creator = _is_creator(project, identity)

    if share_id is not None:
        _get_chat_share(db, project, share_id, now)
        if is_creator:
            logger.warning("creator_share_join_rejected", share_id=str(share_id))
            raise ConflictError(
                ApiErrorCode.E_CREATOR_SHARE_JOIN,
                "The project creator cannot join through a share link",
            )
    elif isinstance(identity, Guest):
        raise ForbiddenError(
            ApiErrorCode.E_SHARE_CHAT_FORBIDDEN, "Guests can only join through a share link"
        )

    existing = get_active_member(db, project_id, identity)
    if existing is not None:
        return member_to_out(db, existing)

    if not is_creator:
        if project.chat_requires_approval:
            raise ForbiddenError(
                ApiErrorCode.E_JOIN_APPROVAL_REQUIRED,
                "This chat requires approval; send a join request instead",
            )
        if has_removed_membership(db, project_id, identity):
            raise ForbiddenError(
                ApiErrorCode.E_CHAT_MEMBER_REMOVED,
                "You were removed from this chat; send a join request instead",
            )

    member, system_message = _create_membership(db, project, identity, share_id, now)
    return _publish_join(db, publisher, member, system_message)


def ensure_creator_membership(db: Session, project_id: UUID) -> ChatMemberOut:
    """Give the project creator a direct, unannounced membership (idempotent)."""
    project = get_project_or_404(db, project_id)
    identity = Registered(project.creator_id)
    existing = get_active_member(db, project_id, identity)
    if existing is not None:
        return member_to_out(db, existing)
    member, _ = _create_membership(db, project, identity, None, utc_now(), announce=None)
    return member_to_out(db, member)


def backfill_creator_memberships(db: Session) -> int:
    """Ensure every project creator has an active chat membership.

    Returns:
        Number of memberships created.
    """
    project_ids = list(db.scalars(select(Project.id).order_by(Project.created_at)))
    created = 0
    for project_id in project_ids:
        project = db.get(Project, project_id)
        if project is None:
            continue
        identity = Registered(project.creator_id)
        if get_active_member(db, project_id, identity) is not None:
            continue
        _create_membership(db, project, identity, None, utc_now(), announce=None)
        created += 1
    logger.info("creator_memberships_backfilled", projects=len(project_ids), created=created)
    return created


def list_members(db: Session, project_id: UUID, viewer: Identity) -> list[ChatMemberOut]:
    """List active chat members, oldest first.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError(E_CHAT_ACCESS_DENIED): If the viewer has no chat access.
    """
    get_project_or_404(db, project_id)
    require_chat_access(db, project_id, viewer)
    members = list(
        db.scalars(
            select(ProjectChatMember)
            .where(
                ProjectChatMember.project_id == project_id,
                ProjectChatMember.is_active == True,  # noqa: E712
            )
            .order_by(ProjectChatMember.joined_at, ProjectChatMember.id)
        )
    )
    return members_to_out(db, members)


def _deactivate(
    db: Session,
    project: Project,
    member: ProjectChatMember,
    removed_by: UUID,
    content: str,
    now: datetime,
    publisher: RealtimePublisher | None,
) -> ChatMemberOut:
    identity = identity_from_fields(member.user_id, member.guest_name)
    name = identity_display_name(db, identity)

    member.is_active = False
    member.removed_by = removed_by
    member.removed_at = now
    system_message = messages_service.append_system_message(
        db,
        project.id,
        actor=identity,
        message_type=SystemMessageType.leave,
        content=content.format(name=name),
        data={
            "user_name": name,
            "user_id": str(member.user_id) if member.user_id else None,
            "guest_name": member.guest_name,
            "member_id": str(member.id),
            "removed_by": str(removed_by),
        },
        now=now,
    )
    db.commit()

    logger.info(
        "chat_member_removed",
        member_id=str(member.id),
        removed_by=str(removed_by),
        self_removal=member.user_id == removed_by,
    )

    out = member_to_out(db, member)
    publish_event(publisher, project.id, CHAT_MEMBER_REMOVED, out.model_dump(mode="json"))
    messages_service.publish_new_message(db, publisher, system_message)
    return out


def remove_member(
    db: Session,
    project_id: UUID,
    member_id: UUID,
    removed_by: UUID,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMemberOut:
    """Remove a member from the chat (soft delete).

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError: If removed_by is not the project creator.
        NotFoundError(E_MEMBER_NOT_FOUND): If the member isn't in this project.
        InvalidRequestError(E_CANNOT_REMOVE_SELF): Removing yourself.
        ConflictError(E_MEMBER_ALREADY_REMOVED): Member is already inactive.
    """
    now = now or utc_now()
    project = get_project_or_404(db, project_id)

    if not can_moderate_chat(db, project_id, removed_by):
        raise ForbiddenError(
            ApiErrorCode.E_FORBIDDEN, "Only the project creator can remove members"
        )

    member = db.get(ProjectChatMember, member_id)
    if member is None or member.project_id != project_id:
        raise NotFoundError(ApiErrorCode.E_MEMBER_NOT_FOUND, "Chat member not found")

    if member.user_id is not None and member.user_id == removed_by:
        raise InvalidRequestError(ApiErrorCode.E_CANNOT_REMOVE_SELF, "You cannot remove yourself")

    if not member.is_active:
        raise ConflictError(ApiErrorCode.E_MEMBER_ALREADY_REMOVED, "Member was already removed")

    return _deactivate(
        db, project, member, removed_by, "{name} was removed from the chat", now, publisher
    )


def leave_chat(
    db: Session,
    project_id: UUID,
    user_id: UUID,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMemberOut:
    """Leave a chat (self removal).

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        InvalidRequestError(E_CREATOR_CANNOT_LEAVE): The creator always has access.
        NotFoundError(E_MEMBER_NOT_FOUND): No active membership.
    """
    now = now or utc_now()
    project = get_project_or_404(db, project_id)

    if project.creator_id == user_id:
        raise InvalidRequestError(
            ApiErrorCode.E_CREATOR_CANNOT_LEAVE, "The project creator cannot leave the chat"
        )

    member = get_active_member(db, project_id, Registered(user_id))
    if member is None:
        raise NotFoundError(ApiErrorCode.E_MEMBER_NOT_FOUND, "You are not a member of this chat")

    return _deactivate(db, project, member, user_id, "{name} left the chat", now, publisher)


def request_join(
    db: Session,
    project_id: UUID,
    identity: Identity,
    share_id: UUID | None = None,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> JoinRequestOut:
    """Ask to join a chat. Idempotent while a request is pending.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError(E_SHARE_CHAT_FORBIDDEN): Share unusable for chat, or a guest
            requesting without a share.
        ConflictError(E_ALREADY_MEMBER): Creator or active member.
    """
    now = now or utc_now()
    project = get_project_or_404(db, project_id)

    if share_id is not None:
        _get_chat_share(db, project, share_id, now)
    elif isinstance(identity, Guest):
        raise ForbiddenError(
            ApiErrorCode.E_SHARE_CHAT_FORBIDDEN,
            "Guests can only request access through a share link",
        )

    if _is_creator(project, identity) or get_active_member(db, project_id, identity) is not None:
        raise ConflictError(ApiErrorCode.E_ALREADY_MEMBER, "Already a member of this chat")

    pending = _get_pending_request(db, project_id, identity)
    if pending is not None:
        return join_request_to_out(db, pending)

    user_id, guest_name = identity_columns(identity)
    join_request = ChatJoinRequest(
        project_id=project_id,
        user_id=user_id,
        guest_name=guest_name,
        status=JoinRequestStatus.pending.value,
        requested_at=now,
    )
    db.add(join_request)
    try:
        db.flush()
    except IntegrityError:
        # Lost race: a concurrent request created the pending row
        db.rollback()
        pending = _get_pending_request(db, project_id, identity)
        if pending is None:
            raise
        return join_request_to_out(db, pending)

    name = identity_display_name(db, identity)
    system_message = messages_service.append_system_message(
        db,
        project_id,
        actor=identity,
        message_type=SystemMessageType.join_request,
        content=f"{name} requested to join the chat",
        data={
            "user_name": name,
            "user_id": str(user_id) if user_id else None,
            "guest_name": guest_name,
            "request_id": str(join_request.id),
        },
        now=now,
    )
    db.commit()

    logger.info("chat_join_requested", request_id=str(join_request.id))

    out = join_request_to_out(db, join_request)
    publish_event(publisher, project_id, CHAT_JOIN_REQUEST, out.model_dump(mode="json"))
    messages_service.publish_new_message(db, publisher, system_message)
    return out


def list_join_requests(db: Session, project_id: UUID, viewer_id: UUID) -> list[JoinRequestOut]:
    """List pending join requests, oldest first.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError(E_CHAT_ACCESS_DENIED): If the viewer has no chat access.
    """
    get_project_or_404(db, project_id)
    require_chat_access(db, project_id, Registered(viewer_id))
    requests = db.scalars(
        select(ChatJoinRequest)
        .where(
            ChatJoinRequest.project_id == project_id,
            ChatJoinRequest.status == JoinRequestStatus.pending.value,
        )
        .order_by(ChatJoinRequest.requested_at, ChatJoinRequest.id)
    )
    return [join_request_to_out(db, r) for r in requests]


def respond_to_join_request(
    db: Session,
    project_id: UUID,
    request_id: UUID,
    approve: bool,
    responder_id: UUID,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> JoinRequestOut:
    """Approve or reject a pending join request.

    Approval performs the join directly: approval gating and earlier removal
    do not apply to an approved identity.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        NotFoundError(E_JOIN_REQUEST_NOT_FOUND): If the request isn't in this project.
        ForbiddenError: If the responder is neither creator nor active member.
        ConflictError(E_JOIN_REQUEST_ALREADY_RESPONDED): Request is not pending.
    """
    now = now or utc_now()
    project = get_project_or_404(db, project_id)

    join_request = db.get(ChatJoinRequest, request_id)
    if join_request is None or join_request.project_id != project_id:
        raise NotFoundError(ApiErrorCode.E_JOIN_REQUEST_NOT_FOUND, "Join request not found")

    if not can_respond_to_join_requests(db, project_id, responder_id):
        raise ForbiddenError(
            ApiErrorCode.E_FORBIDDEN, "Only chat members can respond to join requests"
        )

    new_status = JoinRequestStatus.approved if approve else JoinRequestStatus.rejected
    result = db.execute(
        update(ChatJoinRequest)
        .where(
            ChatJoinRequest.id == request_id,
            ChatJoinRequest.status == JoinRequestStatus.pending.value,
        )
        .values(status=new_status.value, responded_at=now, responded_by=responder_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise ConflictError(
            ApiErrorCode.E_JOIN_REQUEST_ALREADY_RESPONDED,
            "This join request has already been processed",
        )
    db.commit()
    db.refresh(join_request)

    identity = identity_from_fields(join_request.user_id, join_request.guest_name)
    logger.info(
        "chat_join_request_responded",
        request_id=str(request_id),
        status=new_status.value,
        responder_id=str(responder_id),
    )

    if approve:
        member = get_active_member(db, project_id, identity)
        system_message = None
        if member is None:
            member, system_message = _create_membership(
                db, project, identity, None, now, announce=SystemMessageType.join_approved
            )
        out = join_request_to_out(db, join_request)
        payload = out.model_dump(mode="json")
        payload["member"] = member_to_out(db, member).model_dump(mode="json")
        publish_event(publisher, project_id, CHAT_REQUEST_APPROVED, payload)
        if system_message is not None:
            messages_service.publish_new_message(db, publisher, system_message)
        return out

    out = join_request_to_out(db, join_request)
    publish_event(publisher, project_id, CHAT_REQUEST_REJECTED, out.model_dump(mode="json"))
    return out


def get_chat_access_status(db: Session, project_id: UUID, user_id: UUID) -> ChatAccessStatusOut:
    """Report where a user stands with a project's chat.

    Precedence: admin, member, pending, removed, rejected, can_request.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
    """
    project = get_project_or_404(db, project_id)
    identity = Registered(user_id)

    if project.creator_id == user_id:
        return ChatAccessStatusOut(project_id=project_id, status="admin")

    member = get_active_member(db, project_id, identity)
    if member is not None:
        return ChatAccessStatusOut(project_id=project_id, status="member", member_id=member.id)

    pending = _get_pending_request(db, project_id, identity)
    if pending is not None:
        return ChatAccessStatusOut(project_id=project_id, status="pending", request_id=pending.id)

    if has_removed_membership(db, project_id, identity):
        return ChatAccessStatusOut(project_id=project_id, status="removed")

    rejected = db.scalar(
        select(ChatJoinRequest)
        .where(
            ChatJoinRequest.project_id == project_id,
            ChatJoinRequest.user_id == user_id,
            ChatJoinRequest.status == JoinRequestStatus.rejected.value,
        )
        .order_by(ChatJoinRequest.requested_at.desc())
        .limit(1)
    )
    if rejected is not None:
        return ChatAccessStatusOut(project_id=project_id, status="rejected", request_id=rejected.id)

    return ChatAccessStatusOut(project_id=project_id, status="can_request")
