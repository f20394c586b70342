"""Chat message service layer (the message store).

Implements append, listing, delivery/read receipts and message info for
project chats.

Receipt semantics:
- delivered_to / read_by are the message_receipts rows for the message
- mark_delivered is idempotent
- mark_read records a read receipt and, if absent, a delivery receipt
- No membership check on receipts: they are a best-effort status indicator
- messages.status is the legacy aggregate, recomputed after each new receipt
  from receipts of participants other than the sender

Lifecycle:
- Only the sender edits, within EDIT_WINDOW of sending
- Only the sender deletes, within DELETE_WINDOW; deletion is soft (content
  replaced, row kept) and clears reactions and the pin
- Only the project creator pins
- Any participant with chat access toggles emoji reactions
- A deleted message cannot be edited, pinned or reacted to

Reply references are weak. A reply to a message that no longer exists (or
lives in another project) is rendered with reply_to=None; a reply to a
deleted message renders the placeholder with reply_to.is_deleted set.

Service functions correspond 1:1 with route handlers.
Routes are transport-only and call exactly one service function.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reelroom.auth.permissions import can_moderate_chat
from reelroom.db.models import (
    Message,
    MessageReaction,
    MessageReceipt,
    MessageStatus,
    ReceiptState,
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
from reelroom.identity import Guest, Identity, normalize_guest_name, parse_participant_id
from reelroom.logging import get_logger, set_project_context
from reelroom.schemas.chat import (
    ChatMessageOut,
    MessageInfoOut,
    PageInfo,
    ReceiptOut,
    ReplyContextOut,
)
from reelroom.services.pagination import (
    DEFAULT_LIMIT,
    clamp_limit,
    decode_message_cursor,
    encode_message_cursor,
)
from reelroom.services.projects import (
    get_project_or_404,
    participant_display_names,
    require_chat_access,
    touch_last_seen,
)
from reelroom.services.realtime import (
    MESSAGE_DELETED,
    MESSAGE_NEW,
    MESSAGE_STATUS,
    MESSAGE_UPDATED,
    RealtimePublisher,
    publish_event,
)

logger = get_logger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 10_000
EDIT_WINDOW = timedelta(minutes=15)
DELETE_WINDOW = timedelta(hours=1)
DELETED_CONTENT = "This message was deleted"
MAX_EMOJI_LENGTH = 32


# =============================================================================
# Helper Functions
# =============================================================================


def _validate_content(content: str, max_length: int) -> str:
    body = content.strip()
    if not body:
        raise InvalidRequestError(ApiErrorCode.E_MESSAGE_EMPTY, "Message content is required")
    if len(body) > max_length:
        raise InvalidRequestError(
            ApiErrorCode.E_MESSAGE_TOO_LONG,
            f"Message content exceeds {max_length} characters",
        )
    return body


def get_message_or_404(db: Session, message_id: UUID) -> Message:
    """Load a message.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
    """
    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
    set_project_context(str(message.project_id))
    return message


def derive_status(sender_id: str, receipts: Iterable[MessageReceipt]) -> MessageStatus:
    """Aggregate status: read > delivered > sent, ignoring the sender's own receipts."""
    states = {r.state for r in receipts if r.participant_id != sender_id}
    if ReceiptState.read.value in states:
        return MessageStatus.read
    if ReceiptState.delivered.value in states:
        return MessageStatus.delivered
    return MessageStatus.sent


def _load_receipts(db: Session, message_ids: list[UUID]) -> dict[UUID, list[MessageReceipt]]:
    if not message_ids:
        return {}
    rows = db.scalars(
        select(MessageReceipt)
        .where(MessageReceipt.message_id.in_(message_ids))
        .order_by(MessageReceipt.created_at, MessageReceipt.participant_id)
    )
    grouped: dict[UUID, list[MessageReceipt]] = {}
    for receipt in rows:
        grouped.setdefault(receipt.message_id, []).append(receipt)
    return grouped


def _load_reactions(db: Session, message_ids: list[UUID]) -> dict[UUID, dict[str, list[str]]]:
    if not message_ids:
        return {}
    rows = db.scalars(
        select(MessageReaction)
        .where(MessageReaction.message_id.in_(message_ids))
        .order_by(MessageReaction.created_at, MessageReaction.participant_id)
    )
    grouped: dict[UUID, dict[str, list[str]]] = {}
    for reaction in rows:
        grouped.setdefault(reaction.message_id, {}).setdefault(reaction.emoji, []).append(
            reaction.participant_id
        )
    return grouped


def _checked_participant_id(participant_id: str) -> str:
    """Canonical form of a reported participant id.

    Raises:
        InvalidRequestError(E_INVALID_IDENTITY): Not a user UUID or a valid guest key.
    """
    identity = parse_participant_id(participant_id)
    if isinstance(identity, Guest):
        identity = Guest(normalize_guest_name(identity.name))
    return identity.participant_id


def _participants(receipts: list[MessageReceipt], state: ReceiptState) -> list[str]:
    seen: list[str] = []
    for receipt in receipts:
        if receipt.state == state.value and receipt.participant_id not in seen:
            seen.append(receipt.participant_id)
    return seen


def messages_to_out(db: Session, messages: list[Message]) -> list[ChatMessageOut]:
    """Convert Message rows to ChatMessageOut with receipts, names and reply context."""
    receipts = _load_receipts(db, [m.id for m in messages])
    reactions = _load_reactions(db, [m.id for m in messages])

    reply_ids = {m.reply_to_message_id for m in messages if m.reply_to_message_id}
    replies: dict[UUID, Message] = {}
    if reply_ids:
        replies = {r.id: r for r in db.scalars(select(Message).where(Message.id.in_(reply_ids)))}

    names = participant_display_names(
        db, [m.sender_id for m in messages] + [r.sender_id for r in replies.values()]
    )

    result = []
    for message in messages:
        message_receipts = receipts.get(message.id, [])
        reply_context = None
        target = replies.get(message.reply_to_message_id) if message.reply_to_message_id else None
        if target is not None and target.project_id == message.project_id:
            reply_context = ReplyContextOut(
                id=target.id,
                sender_id=target.sender_id,
                sender_name=names[target.sender_id],
                content=target.content,
                is_deleted=target.is_deleted,
            )

        result.append(
            ChatMessageOut(
                id=message.id,
                project_id=message.project_id,
                sender_id=message.sender_id,
                sender_name=names[message.sender_id],
                content=message.content,
                status=message.status,
                delivered_to=_participants(message_receipts, ReceiptState.delivered),
                read_by=_participants(message_receipts, ReceiptState.read),
                reply_to_message_id=message.reply_to_message_id,
                reply_to=reply_context,
                is_system_message=message.is_system_message,
                system_message_type=message.system_message_type,
                system_message_data=message.system_message_data,
                is_edited=message.is_edited,
                edited_at=message.edited_at,
                is_deleted=message.is_deleted,
                deleted_at=message.deleted_at,
                deleted_by=message.deleted_by,
                is_pinned=message.is_pinned,
                pinned_at=message.pinned_at,
                pinned_by=message.pinned_by,
                reactions=reactions.get(message.id, {}),
                created_at=message.created_at,
                updated_at=message.updated_at,
            )
        )
    return result


def message_to_out(db: Session, message: Message) -> ChatMessageOut:
    """Convert a single Message row."""
    return messages_to_out(db, [message])[0]


def _existing_receipt_states(db: Session, message_id: UUID, participant_id: str) -> set[str]:
    return set(
        db.scalars(
            select(MessageReceipt.state).where(
                MessageReceipt.message_id == message_id,
                MessageReceipt.participant_id == participant_id,
            )
        )
    )


def _record_receipts(
    db: Session,
    message_id: UUID,
    participant_id: str,
    states: list[ReceiptState],
    now: datetime,
) -> bool:
    """Insert the missing receipt rows for a participant.

    Returns:
        True if at least one row was added, False if all were already present.
    """
    for _attempt in range(2):
        existing = _existing_receipt_states(db, message_id, participant_id)
        missing = [state for state in states if state.value not in existing]
        if not missing:
            return False

        for state in missing:
            db.add(
                MessageReceipt(
                    message_id=message_id,
                    participant_id=participant_id,
                    state=state.value,
                    created_at=now,
                )
            )
        try:
            db.flush()
            return True
        except IntegrityError:
            # Lost race: a concurrent request recorded the same receipt
            db.rollback()
            logger.info(
                "receipt_race_resolved",
                message_id=str(message_id),
                participant_id=participant_id,
            )
    return False


def _refresh_status(db: Session, message: Message, now: datetime) -> None:
    receipts = db.scalars(select(MessageReceipt).where(MessageReceipt.message_id == message.id))
    status = derive_status(message.sender_id, receipts)
    if message.status != status.value:
        message.status = status.value
        message.updated_at = now


def _mark(
    db: Session,
    message_id: UUID,
    participant_id: str,
    states: list[ReceiptState],
    publisher: RealtimePublisher | None,
    now: datetime | None,
) -> ChatMessageOut:
    participant_id = _checked_participant_id(participant_id)
    now = now or utc_now()
    get_message_or_404(db, message_id)

    added = _record_receipts(db, message_id, participant_id, states, now)

    # Reload: a lost race rolls back and expires the session
    message = get_message_or_404(db, message_id)
    if added:
        _refresh_status(db, message, now)
        db.commit()

    out = message_to_out(db, message)

    if added:
        logger.info(
            "message_receipt_recorded",
            message_id=str(message_id),
            participant_id=participant_id,
            states=[s.value for s in states],
            status=out.status,
        )
        publish_event(
            publisher,
            message.project_id,
            MESSAGE_STATUS,
            {
                "message_id": str(message.id),
                "participant_id": participant_id,
                "status": out.status,
                "delivered_to": out.delivered_to,
                "read_by": out.read_by,
            },
        )
    return out


# =============================================================================
# Service Functions
# =============================================================================


def append_message(
    db: Session,
    project_id: UUID,
    sender: Identity,
    content: str,
    reply_to_message_id: UUID | None = None,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
    max_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
) -> ChatMessageOut:
    """Append a message to a project's chat.

    The message starts as status=sent with empty delivered_to / read_by.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError(E_CHAT_ACCESS_DENIED): If the sender is not the creator or
            an active member.
        InvalidRequestError(E_MESSAGE_EMPTY | E_MESSAGE_TOO_LONG): Bad body.
    """
    get_project_or_404(db, project_id)
    require_chat_access(db, project_id, sender)
    body = _validate_content(content, max_length)
    now = now or utc_now()

    message = Message(
        project_id=project_id,
        sender_id=sender.participant_id,
        content=body,
        status=MessageStatus.sent.value,
        reply_to_message_id=reply_to_message_id,
        is_system_message=False,
        created_at=now,
        updated_at=now,
    )
    db.add(message)
    touch_last_seen(db, project_id, sender, now)
    db.flush()
    db.commit()

    out = message_to_out(db, message)
    logger.info(
        "message_appended",
        message_id=str(message.id),
        is_reply=reply_to_message_id is not None,
    )
    publish_event(publisher, project_id, MESSAGE_NEW, out.model_dump(mode="json"))
    return out


def append_system_message(
    db: Session,
    project_id: UUID,
    actor: Identity,
    message_type: SystemMessageType,
    content: str,
    data: dict[str, Any],
    now: datetime,
) -> Message:
    """Stage a membership event message in the caller's transaction.

    Does not commit; the caller commits together with the membership change
    and publishes afterwards.
    """
    message = Message(
        project_id=project_id,
        sender_id=actor.participant_id,
        content=content,
        status=MessageStatus.sent.value,
        is_system_message=True,
        system_message_type=message_type.value,
        system_message_data=data,
        created_at=now,
        updated_at=now,
    )
    db.add(message)
    db.flush()
    return message


def publish_new_message(db: Session, publisher: RealtimePublisher | None, message: Message) -> None:
    """Broadcast message:new for a committed message."""
    if publisher is None:
        return
    out = message_to_out(db, message)
    publish_event(publisher, message.project_id, MESSAGE_NEW, out.model_dump(mode="json"))


def list_messages(
    db: Session,
    project_id: UUID,
    viewer: Identity,
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
    now: datetime | None = None,
) -> tuple[list[ChatMessageOut], PageInfo]:
    """List messages in chat order (created_at ASC, id ASC).

    Listing counts as presence: the viewer's last_seen_at is bumped.

    Raises:
        NotFoundError(E_PROJECT_NOT_FOUND): If the project doesn't exist.
        ForbiddenError(E_CHAT_ACCESS_DENIED): If the viewer has no chat access.
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed.
    """
    get_project_or_404(db, project_id)
    require_chat_access(db, project_id, viewer)

    limit = clamp_limit(limit)

    touch_last_seen(db, project_id, viewer, now or utc_now())
    db.commit()

    query = select(Message).where(Message.project_id == project_id)
    if cursor:
        cursor_created_at, cursor_id = decode_message_cursor(cursor)
        query = query.where(
            or_(
                Message.created_at > cursor_created_at,
                and_(Message.created_at == cursor_created_at, Message.id > cursor_id),
            )
        )
    query = query.order_by(Message.created_at.asc(), Message.id.asc()).limit(limit + 1)

    rows = list(db.scalars(query))

    has_more = len(rows) > limit
    if has_more:
        rows = rows[:limit]

    messages = messages_to_out(db, rows)

    next_cursor = None
    if has_more and messages:
        last = messages[-1]
        next_cursor = encode_message_cursor(last.created_at, last.id)

    return messages, PageInfo(next_cursor=next_cursor)


def mark_delivered(
    db: Session,
    message_id: UUID,
    participant_id: str,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMessageOut:
    """Add participant_id to the message's delivered_to set (idempotent).

    Raises:
        InvalidRequestError(E_INVALID_IDENTITY): Malformed participant_id.
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
    """
    return _mark(db, message_id, participant_id, [ReceiptState.delivered], publisher, now)


def mark_read(
    db: Session,
    message_id: UUID,
    participant_id: str,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMessageOut:
    """Add participant_id to read_by and, if absent, to delivered_to.

    Raises:
        InvalidRequestError(E_INVALID_IDENTITY): Malformed participant_id.
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
    """
    return _mark(
        db,
        message_id,
        participant_id,
        [ReceiptState.delivered, ReceiptState.read],
        publisher,
        now,
    )


def update_message_status(
    db: Session,
    message_id: UUID,
    participant_id: str,
    status: str,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMessageOut:
    """Report delivery or read for a message.

    Raises:
        InvalidRequestError: If status is not "delivered" or "read".
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
    """
    if status == ReceiptState.delivered.value:
        return mark_delivered(db, message_id, participant_id, publisher, now)
    if status == ReceiptState.read.value:
        return mark_read(db, message_id, participant_id, publisher, now)
    raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Status must be delivered or read")


def get_message_info(db: Session, message_id: UUID, viewer: Identity) -> MessageInfoOut:
    """Who received and read a message, with timestamps.

    Only the sender may see this. The sender's own receipts are left out.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
        ForbiddenError(E_MESSAGE_INFO_FORBIDDEN): If the viewer is not the sender.
    """
    message = get_message_or_404(db, message_id)
    if message.sender_id != viewer.participant_id:
        raise ForbiddenError(
            ApiErrorCode.E_MESSAGE_INFO_FORBIDDEN, "Only the sender can view message info"
        )

    receipts = [
        r
        for r in _load_receipts(db, [message.id]).get(message.id, [])
        if r.participant_id != message.sender_id
    ]
    names = participant_display_names(db, [r.participant_id for r in receipts])

    def _receipt_out(state: ReceiptState) -> list[ReceiptOut]:
        return [
            ReceiptOut(
                participant_id=r.participant_id, name=names[r.participant_id], at=r.created_at
            )
            for r in receipts
            if r.state == state.value
        ]

    return MessageInfoOut(
        message_id=message.id,
        status=message.status,
        delivered_to=_receipt_out(ReceiptState.delivered),
        read_by=_receipt_out(ReceiptState.read),
    )


# =============================================================================
# Lifecycle: edit, delete, pin, react
# =============================================================================


def _require_not_deleted(message: Message) -> None:
    if message.is_deleted:
        raise ConflictError(ApiErrorCode.E_MESSAGE_DELETED, "This message was deleted")


def _publish_message(
    db: Session, publisher: RealtimePublisher | None, message: Message, event: str
) -> ChatMessageOut:
    out = message_to_out(db, message)
    publish_event(publisher, message.project_id, event, out.model_dump(mode="json"))
    return out


def edit_message(
    db: Session,
    message_id: UUID,
    editor: Identity,
    content: str,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
    max_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
) -> ChatMessageOut:
    """Replace a message's content. Sender only, within EDIT_WINDOW of sending.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
        ForbiddenError(E_MESSAGE_EDIT_FORBIDDEN): Not the sender, or a system message.
        ConflictError(E_MESSAGE_DELETED): The message was deleted.
        ForbiddenError(E_EDIT_WINDOW_EXPIRED): Too long after sending.
        ForbiddenError(E_CHAT_ACCESS_DENIED): The sender no longer has chat access.
        InvalidRequestError(E_MESSAGE_EMPTY | E_MESSAGE_TOO_LONG): Bad body.
    """
    now = now or utc_now()
    message = get_message_or_404(db, message_id)
    if message.is_system_message or message.sender_id != editor.participant_id:
        raise ForbiddenError(
            ApiErrorCode.E_MESSAGE_EDIT_FORBIDDEN, "Only the sender can edit a message"
        )
    _require_not_deleted(message)
    if now - message.created_at > EDIT_WINDOW:
        raise ForbiddenError(
            ApiErrorCode.E_EDIT_WINDOW_EXPIRED, "Messages can only be edited within 15 minutes"
        )
    require_chat_access(db, message.project_id, editor)
    body = _validate_content(content, max_length)

    message.content = body
    message.is_edited = True
    message.edited_at = now
    message.updated_at = now
    db.commit()

    logger.info("message_edited", message_id=str(message.id))
    return _publish_message(db, publisher, message, MESSAGE_UPDATED)


def delete_message(
    db: Session,
    message_id: UUID,
    actor: Identity,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMessageOut:
    """Delete a message for everyone. Sender only, within DELETE_WINDOW.

    The row is kept with its content replaced, so replies still resolve.
    Deleting an already deleted message returns it unchanged.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
        ForbiddenError(E_MESSAGE_DELETE_FORBIDDEN): Not the sender, or a system message.
        ForbiddenError(E_DELETE_WINDOW_EXPIRED): Too long after sending.
        ForbiddenError(E_CHAT_ACCESS_DENIED): The sender no longer has chat access.
    """
    now = now or utc_now()
    message = get_message_or_404(db, message_id)
    if message.is_system_message or message.sender_id != actor.participant_id:
        raise ForbiddenError(
            ApiErrorCode.E_MESSAGE_DELETE_FORBIDDEN, "Only the sender can delete a message"
        )
    if message.is_deleted:
        return message_to_out(db, message)
    if now - message.created_at > DELETE_WINDOW:
        raise ForbiddenError(
            ApiErrorCode.E_DELETE_WINDOW_EXPIRED, "Messages can only be deleted within 1 hour"
        )
    require_chat_access(db, message.project_id, actor)

    message.content = DELETED_CONTENT
    message.is_deleted = True
    message.deleted_at = now
    message.deleted_by = actor.participant_id
    message.is_pinned = False
    message.pinned_at = None
    message.pinned_by = None
    message.updated_at = now
    db.execute(delete(MessageReaction).where(MessageReaction.message_id == message.id))
    db.commit()

    logger.info("message_deleted", message_id=str(message.id))
    return _publish_message(db, publisher, message, MESSAGE_DELETED)


def set_message_pinned(
    db: Session,
    message_id: UUID,
    user_id: UUID,
    pinned: bool,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMessageOut:
    """Pin or unpin a message. Project creator only; repeating a state is a no-op.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
        ForbiddenError(E_MESSAGE_PIN_FORBIDDEN): Not the project creator.
        ConflictError(E_MESSAGE_DELETED): The message was deleted.
    """
    now = now or utc_now()
    message = get_message_or_404(db, message_id)
    if not can_moderate_chat(db, message.project_id, user_id):
        raise ForbiddenError(
            ApiErrorCode.E_MESSAGE_PIN_FORBIDDEN, "Only the project creator can pin messages"
        )
    _require_not_deleted(message)
    if message.is_pinned == pinned:
        return message_to_out(db, message)

    message.is_pinned = pinned
    message.pinned_at = now if pinned else None
    message.pinned_by = user_id if pinned else None
    message.updated_at = now
    db.commit()

    logger.info("message_pin_changed", message_id=str(message.id), pinned=pinned)
    return _publish_message(db, publisher, message, MESSAGE_UPDATED)


def toggle_reaction(
    db: Session,
    message_id: UUID,
    participant: Identity,
    emoji: str,
    publisher: RealtimePublisher | None = None,
    now: datetime | None = None,
) -> ChatMessageOut:
    """Add the participant's emoji reaction, or remove it if already present.

    Raises:
        InvalidRequestError(E_INVALID_REACTION): Blank or overlong emoji.
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
        ConflictError(E_MESSAGE_DELETED): The message was deleted.
        ForbiddenError(E_CHAT_ACCESS_DENIED): No chat access.
    """
    emoji = emoji.strip()
    if not emoji or len(emoji) > MAX_EMOJI_LENGTH:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REACTION,
            f"Reaction must be 1-{MAX_EMOJI_LENGTH} characters",
        )
    now = now or utc_now()
    message = get_message_or_404(db, message_id)
    _require_not_deleted(message)
    require_chat_access(db, message.project_id, participant)

    key = (message.id, participant.participant_id, emoji)
    existing = db.get(MessageReaction, key)
    if existing is not None:
        db.delete(existing)
        added = False
    else:
        db.add(
            MessageReaction(
                message_id=message.id,
                participant_id=participant.participant_id,
                emoji=emoji,
                created_at=now,
            )
        )
        added = True
    try:
        db.commit()
    except IntegrityError:
        # Lost race: a concurrent request added the same reaction
        db.rollback()
        added = True
        logger.info("reaction_race_resolved", message_id=str(message_id))

    message = get_message_or_404(db, message_id)
    logger.info("message_reaction_toggled", message_id=str(message.id), added=added)
    return _publish_message(db, publisher, message, MESSAGE_UPDATED)
