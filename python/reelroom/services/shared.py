"""Share-link entry points for the chat.

Visitors holding a share token reach the chat without being project
collaborators. A signed-in visitor acts as themselves; anyone else acts as a
guest identified by the display name they supply with each call.

Every call first resolves the token (404 unknown, 403 inactive or expired)
and then delegates to the message or membership service for the share's
project.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from reelroom.db.models import ProjectShare
from reelroom.errors import ApiErrorCode, ForbiddenError, NotFoundError
from reelroom.identity import Guest, Identity, Registered, normalize_guest_name
from reelroom.schemas.chat import ChatMessageOut, PageInfo
from reelroom.schemas.membership import ChatMemberOut, JoinRequestOut
from reelroom.services import membership as membership_service
from reelroom.services import messages as messages_service
from reelroom.services.realtime import RealtimePublisher
from reelroom.services.shares import get_share_by_token


def visitor_identity(user_id: UUID | None, guest_name: str | None) -> Identity:
    """The signed-in user if there is one, otherwise a named guest.

    Raises:
        InvalidRequestError(E_INVALID_IDENTITY): Guest without a usable name.
    """
    if user_id is not None:
        return Registered(user_id)
    return Guest(normalize_guest_name(guest_name or ""))


def _chat_share(db: Session, token: str) -> ProjectShare:
    share = get_share_by_token(db, token)
    if not share.can_chat:
        raise ForbiddenError(
            ApiErrorCode.E_SHARE_CHAT_FORBIDDEN, "This share link does not allow chat"
        )
    return share


def join_via_share(
    db: Session,
    token: str,
    identity: Identity,
    publisher: RealtimePublisher | None = None,
) -> ChatMemberOut:
    share = _chat_share(db, token)
    return membership_service.join_chat(
        db, share.project_id, identity, share_id=share.id, publisher=publisher
    )


def request_via_share(
    db: Session,
    token: str,
    identity: Identity,
    publisher: RealtimePublisher | None = None,
) -> JoinRequestOut:
    share = _chat_share(db, token)
    return membership_service.request_join(
        db, share.project_id, identity, share_id=share.id, publisher=publisher
    )


def list_shared_messages(
    db: Session,
    token: str,
    identity: Identity,
    limit: int,
    cursor: str | None = None,
) -> tuple[list[ChatMessageOut], PageInfo]:
    share = _chat_share(db, token)
    return messages_service.list_messages(db, share.project_id, identity, limit, cursor)


def send_shared_message(
    db: Session,
    token: str,
    identity: Identity,
    content: str,
    reply_to_message_id: UUID | None = None,
    publisher: RealtimePublisher | None = None,
    max_length: int = messages_service.DEFAULT_MAX_MESSAGE_LENGTH,
) -> ChatMessageOut:
    share = _chat_share(db, token)
    return messages_service.append_message(
        db,
        share.project_id,
        identity,
        content,
        reply_to_message_id=reply_to_message_id,
        publisher=publisher,
        max_length=max_length,
    )


def update_shared_message_status(
    db: Session,
    token: str,
    message_id: UUID,
    identity: Identity,
    status: str,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMessageOut:
    """Receipts through a share link only reach messages of the share's project.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): Unknown message, or another project's.
    """
    share = _chat_share(db, token)
    message = messages_service.get_message_or_404(db, message_id)
    if message.project_id != share.project_id:
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
    return messages_service.update_message_status(
        db, message_id, identity.participant_id, status, publisher=publisher, now=now
    )
