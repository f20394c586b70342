"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from reelroom.api.routes.chat_members import router as chat_members_router
from reelroom.api.routes.health import router as health_router
from reelroom.api.routes.messages import router as messages_router
from reelroom.api.routes.shared import router as shared_router
from reelroom.api.routes.shares import router as shares_router
from reelroom.api.routes.unread import router as unread_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    The unread router goes before the message router so its static
    /messages/unread/... path wins over /messages/{message_id}/....
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(unread_router, tags=["unread"])
    api_router.include_router(messages_router, tags=["messages"])
    api_router.include_router(chat_members_router, tags=["chat-members"])
    api_router.include_router(shares_router, tags=["shares"])
    api_router.include_router(shared_router, tags=["shared"])
    return api_router


__all__ = ["create_api_router"]
