"""FastAPI dependencies for route handlers.

The engine, session factory and realtime publisher are created once in the
app lifespan and kept on app.state.
"""

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from reelroom.auth.middleware import get_optional_viewer, get_viewer
from reelroom.services.realtime import RealtimePublisher

__all__ = ["get_db", "get_realtime", "get_viewer", "get_optional_viewer"]


def get_db(request: Request) -> Generator[Session, None, None]:
    """Yield a database session that is closed after the request."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_realtime(request: Request) -> RealtimePublisher:
    """The shared realtime publisher from app state."""
    return request.app.state.realtime_publisher
