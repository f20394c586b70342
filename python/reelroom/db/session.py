"""Database session management.

Provides:
- Session factories bound to an explicitly constructed engine

The request-scoped get_db() dependency lives in reelroom.api.deps and reads the
factory from app.state, so there is no process-wide session factory.
"""

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to an engine."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
