"""Unread counter routes.

Registered before the message routes so /messages/unread/counts is never
captured by /messages/{message_id}/... patterns.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reelroom.api.deps import get_db
from reelroom.auth.middleware import Viewer, get_viewer
from reelroom.responses import success_response
from reelroom.services import unread as unread_service

router = APIRouter()


@router.get("/messages/unread/counts")
def get_unread_counts(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Unread counts per chat for the viewer, plus the total."""
    result = unread_service.unread_for(db, viewer.user_id)
    return success_response(result.model_dump(mode="json"))


@router.put("/projects/{project_id}/mark-read")
def mark_project_read(
    project_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Move the viewer's read watermark for the project to now."""
    result = unread_service.mark_project_read(db, project_id, viewer.user_id)
    return success_response(result.model_dump(mode="json"))
