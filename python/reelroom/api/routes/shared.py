"""Public share-link routes.

Reachable with or without a bearer token. A signed-in visitor acts as
themselves; otherwise the request must carry guest_name (in the body, or in
the query string for GET).
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from reelroom.api.deps import get_db, get_realtime
from reelroom.auth.middleware import Viewer, get_optional_viewer
from reelroom.config import get_settings
from reelroom.responses import success_response
from reelroom.schemas.chat import SharedSendMessageRequest, SharedUpdateMessageStatusRequest
from reelroom.schemas.membership import SharedJoinRequest
from reelroom.services import shared as shared_service
from reelroom.services import shares as shares_service
from reelroom.services.realtime import RealtimePublisher

router = APIRouter()


def _viewer_id(viewer: Viewer | None) -> UUID | None:
    return viewer.user_id if viewer is not None else None


@router.get("/shared/{token}")
def get_shared_project(
    token: str,
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """What the share link exposes about its project."""
    result = shares_service.get_shared_project(db, token)
    return success_response(result.model_dump(mode="json"))


@router.post("/shared/{token}/access")
def log_share_access(
    token: str,
    request: Request,
    viewer: Annotated[Viewer | None, Depends(get_optional_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Record a visit through the link. The creator's own visits are not logged."""
    result = shares_service.log_share_access(
        db,
        token,
        _viewer_id(viewer),
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/shared/{token}/chat-members", status_code=201)
def join_via_share(
    token: str,
    body: SharedJoinRequest,
    viewer: Annotated[Viewer | None, Depends(get_optional_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    identity = shared_service.visitor_identity(_viewer_id(viewer), body.guest_name)
    result = shared_service.join_via_share(db, token, identity, publisher=publisher)
    return success_response(result.model_dump(mode="json"))


@router.post("/shared/{token}/chat-join-requests", status_code=201)
def request_via_share(
    token: str,
    body: SharedJoinRequest,
    viewer: Annotated[Viewer | None, Depends(get_optional_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    identity = shared_service.visitor_identity(_viewer_id(viewer), body.guest_name)
    result = shared_service.request_via_share(db, token, identity, publisher=publisher)
    return success_response(result.model_dump(mode="json"))


@router.get("/shared/{token}/messages")
def list_shared_messages(
    token: str,
    viewer: Annotated[Viewer | None, Depends(get_optional_viewer)],
    db: Annotated[Session, Depends(get_db)],
    guest_name: str | None = Query(default=None, description="Guest display name"),
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
    cursor: str | None = Query(default=None, description="Pagination cursor"),
) -> dict:
    identity = shared_service.visitor_identity(_viewer_id(viewer), guest_name)
    messages, page = shared_service.list_shared_messages(db, token, identity, limit, cursor)
    return {
        "data": [m.model_dump(mode="json") for m in messages],
        "page": page.model_dump(mode="json"),
    }


@router.post("/shared/{token}/messages", status_code=201)
def send_shared_message(
    token: str,
    body: SharedSendMessageRequest,
    viewer: Annotated[Viewer | None, Depends(get_optional_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    identity = shared_service.visitor_identity(_viewer_id(viewer), body.guest_name)
    result = shared_service.send_shared_message(
        db,
        token,
        identity,
        body.content,
        reply_to_message_id=body.reply_to_message_id,
        publisher=publisher,
        max_length=get_settings().message_max_length,
    )
    return success_response(result.model_dump(mode="json"))


@router.put("/shared/{token}/messages/{message_id}/status")
def update_shared_message_status(
    token: str,
    message_id: UUID,
    body: SharedUpdateMessageStatusRequest,
    viewer: Annotated[Viewer | None, Depends(get_optional_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    identity = shared_service.visitor_identity(_viewer_id(viewer), body.guest_name)
    result = shared_service.update_shared_message_status(
        db, token, message_id, identity, body.status, publisher=publisher
    )
    return success_response(result.model_dump(mode="json"))
