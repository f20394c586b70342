"""Share link management routes (project creator only)."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from reelroom.api.deps import get_db
from reelroom.auth.middleware import Viewer, get_viewer
from reelroom.config import get_settings
from reelroom.responses import success_response
from reelroom.schemas.membership import CreateShareRequest, UpdateShareRequest
from reelroom.services import shares as shares_service

router = APIRouter()


@router.get("/projects/{project_id}/shares")
def list_shares(
    project_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = shares_service.list_shares(db, project_id, viewer.user_id)
    return success_response([s.model_dump(mode="json") for s in result])


@router.post("/projects/{project_id}/shares", status_code=201)
def create_share(
    project_id: UUID,
    body: CreateShareRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Create a share link with a fresh random token."""
    result = shares_service.create_share(
        db, project_id, viewer.user_id, body, token_bytes=get_settings().share_token_bytes
    )
    return success_response(result.model_dump(mode="json"))


@router.patch("/shares/{share_id}")
def update_share(
    share_id: UUID,
    body: UpdateShareRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = shares_service.update_share(db, share_id, viewer.user_id, body)
    return success_response(result.model_dump(mode="json"))


@router.delete("/shares/{share_id}", status_code=204)
def delete_share(
    share_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete a share link. Members who joined through it stay."""
    shares_service.delete_share(db, share_id, viewer.user_id)
    return Response(status_code=204)


@router.get("/projects/{project_id}/share-access-logs")
def list_share_access_logs(
    project_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Visits through the project's share links, most recent first."""
    result = shares_service.list_share_access_logs(db, project_id, viewer.user_id)
    return success_response([e.model_dump(mode="json") for e in result])


@router.get("/me/shared-projects")
def list_my_shared_projects(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = shares_service.list_my_shared_projects(db, viewer.user_id)
    return success_response([p.model_dump(mode="json") for p in result])
