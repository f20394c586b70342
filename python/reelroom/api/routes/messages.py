"""Project chat message routes.

Routes are transport-only:
- Extract viewer from request.state
- Call exactly one service function
- Return success(...) or raise ApiError

Response envelope: {"data": ...} or {"data": [...], "page": {...}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from reelroom.api.deps import get_db, get_realtime
from reelroom.auth.middleware import Viewer, get_viewer
from reelroom.config import get_settings
from reelroom.identity import Registered
from reelroom.responses import success_response
from reelroom.schemas.chat import (
    EditMessageRequest,
    PinMessageRequest,
    ReactToMessageRequest,
    SendMessageRequest,
    UpdateMessageStatusRequest,
)
from reelroom.services import messages as messages_service
from reelroom.services.realtime import RealtimePublisher

router = APIRouter()


@router.get("/projects/{project_id}/messages")
def list_messages(
    project_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
    cursor: str | None = Query(default=None, description="Pagination cursor"),
) -> dict:
    """List chat messages oldest first."""
    messages, page = messages_service.list_messages(
        db, project_id, Registered(viewer.user_id), limit=limit, cursor=cursor
    )
    return {
        "data": [m.model_dump(mode="json") for m in messages],
        "page": page.model_dump(mode="json"),
    }


@router.post("/projects/{project_id}/messages", status_code=201)
def send_message(
    project_id: UUID,
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Post a message to the project chat."""
    result = messages_service.append_message(
        db,
        project_id,
        Registered(viewer.user_id),
        body.content,
        reply_to_message_id=body.reply_to_message_id,
        publisher=publisher,
        max_length=get_settings().message_max_length,
    )
    return success_response(result.model_dump(mode="json"))


@router.put("/messages/{message_id}/status")
def update_message_status(
    message_id: UUID,
    body: UpdateMessageStatusRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Report a message as delivered to or read by the viewer."""
    result = messages_service.update_message_status(
        db,
        message_id,
        Registered(viewer.user_id).participant_id,
        body.status,
        publisher=publisher,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/messages/{message_id}/info")
def get_message_info(
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Delivery and read receipts for a message. Sender only."""
    result = messages_service.get_message_info(db, message_id, Registered(viewer.user_id))
    return success_response(result.model_dump(mode="json"))


@router.put("/messages/{message_id}")
def edit_message(
    message_id: UUID,
    body: EditMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Edit a message the viewer sent in the last 15 minutes."""
    result = messages_service.edit_message(
        db,
        message_id,
        Registered(viewer.user_id),
        body.content,
        publisher=publisher,
        max_length=get_settings().message_max_length,
    )
    return success_response(result.model_dump(mode="json"))


@router.delete("/messages/{message_id}")
def delete_message(
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Delete a message for everyone. Returns the placeholder message."""
    result = messages_service.delete_message(
        db, message_id, Registered(viewer.user_id), publisher=publisher
    )
    return success_response(result.model_dump(mode="json"))


@router.put("/messages/{message_id}/pin")
def pin_message(
    message_id: UUID,
    body: PinMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    result = messages_service.set_message_pinned(
        db, message_id, viewer.user_id, body.pinned, publisher=publisher
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/messages/{message_id}/reactions")
def react_to_message(
    message_id: UUID,
    body: ReactToMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Toggle the viewer's emoji reaction on a message."""
    result = messages_service.toggle_reaction(
        db, message_id, Registered(viewer.user_id), body.emoji, publisher=publisher
    )
    return success_response(result.model_dump(mode="json"))
