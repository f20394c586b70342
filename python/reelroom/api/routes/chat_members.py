"""Chat membership and join request routes.

Routes are transport-only:
- Extract viewer from request.state
- Call exactly one service function
- Return success(...) or raise ApiError

IMPORTANT: /chat-members/leave must be registered BEFORE
/chat-members/{member_id} to prevent UUID path capture.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reelroom.api.deps import get_db, get_realtime
from reelroom.auth.middleware import Viewer, get_viewer
from reelroom.identity import Registered
from reelroom.responses import success_response
from reelroom.schemas.membership import JoinChatRequest
from reelroom.services import membership as membership_service
from reelroom.services.realtime import RealtimePublisher

router = APIRouter()


# =============================================================================
# Members
# =============================================================================


@router.get("/projects/{project_id}/chat-members")
def list_chat_members(
    project_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Active members of the project chat, oldest first."""
    result = membership_service.list_members(db, project_id, Registered(viewer.user_id))
    return success_response([m.model_dump(mode="json") for m in result])


@router.post("/projects/{project_id}/chat-members", status_code=201)
def join_chat(
    project_id: UUID,
    body: JoinChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Join the chat. Idempotent for existing active members."""
    result = membership_service.join_chat(
        db,
        project_id,
        Registered(viewer.user_id),
        share_id=body.share_id,
        publisher=publisher,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/projects/{project_id}/chat-members/leave")
def leave_chat(
    project_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Leave the chat. The creator cannot leave."""
    result = membership_service.leave_chat(db, project_id, viewer.user_id, publisher=publisher)
    return success_response(result.model_dump(mode="json"))


@router.delete("/projects/{project_id}/chat-members/{member_id}")
def remove_chat_member(
    project_id: UUID,
    member_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Remove a member (soft delete). Creator only."""
    result = membership_service.remove_member(
        db, project_id, member_id, viewer.user_id, publisher=publisher
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/projects/{project_id}/chat-access-status")
def get_chat_access_status(
    project_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Where the viewer stands: admin, member, pending, removed, rejected or can_request."""
    result = membership_service.get_chat_access_status(db, project_id, viewer.user_id)
    return success_response(result.model_dump(mode="json"))


# =============================================================================
# Join requests
# =============================================================================


@router.post("/projects/{project_id}/chat-join-requests", status_code=201)
def request_join(
    project_id: UUID,
    body: JoinChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Ask to join the chat. Returns the existing pending request if there is one."""
    result = membership_service.request_join(
        db,
        project_id,
        Registered(viewer.user_id),
        share_id=body.share_id,
        publisher=publisher,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/projects/{project_id}/chat-join-requests")
def list_join_requests(
    project_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Pending join requests, oldest first."""
    result = membership_service.list_join_requests(db, project_id, viewer.user_id)
    return success_response([r.model_dump(mode="json") for r in result])


@router.post("/projects/{project_id}/chat-join-requests/{request_id}/approve")
def approve_join_request(
    project_id: UUID,
    request_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Approve a pending request; the requester becomes a member."""
    result = membership_service.respond_to_join_request(
        db, project_id, request_id, True, viewer.user_id, publisher=publisher
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/projects/{project_id}/chat-join-requests/{request_id}/reject")
def reject_join_request(
    project_id: UUID,
    request_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime)],
) -> dict:
    """Reject a pending request."""
    result = membership_service.respond_to_join_request(
        db, project_id, request_id, False, viewer.user_id, publisher=publisher
    )
    return success_response(result.model_dump(mode="json"))
