"""Pytest configuration and fixtures for Reelroom tests.

Test isolation strategy:
- Every test gets a fresh schema created from the ORM metadata
- By default that is an in-memory SQLite database (one shared connection)
- Set TEST_DATABASE_URL to run the same suite against Postgres
- API tests use an app wired to the test engine and a recording publisher
- Auth tests mint RS256 tokens verified by MockJwtVerifier
"""

import os
from collections.abc import Generator
from typing import Any
from uuid import UUID, uuid4

# Settings are read lazily; these only need to exist before the first get_settings()
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REELROOM_ENV", "test")
os.environ.setdefault("SUPABASE_JWKS_URL", "http://localhost:54321/auth/v1/.well-known/jwks.json")
os.environ.setdefault("SUPABASE_ISSUER", "test-issuer")
os.environ.setdefault("SUPABASE_AUDIENCES", "test-audience")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from reelroom.app import create_app
from reelroom.config import clear_settings_cache
from reelroom.db.engine import create_db_engine
from reelroom.db.models import Base
from reelroom.db.session import create_session_factory
from tests.support.test_verifier import MockJwtVerifier


class RecordingPublisher:
    """Realtime publisher that keeps every event in memory."""

    def __init__(self):
        self.events: list[tuple[UUID, str, dict[str, Any]]] = []
        self.closed = False

    def publish(self, project_id: UUID, event: str, payload: dict[str, Any]) -> None:
        self.events.append((project_id, event, payload))

    def close(self) -> None:
        self.closed = True

    def names(self) -> list[str]:
        return [event for _, event, _ in self.events]

    def clear(self) -> None:
        self.events.clear()


def get_test_database_url() -> str:
    return os.environ.get("TEST_DATABASE_URL", "sqlite://")


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Engine with a freshly created schema, dropped afterwards."""
    engine = create_db_engine(get_test_database_url())
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    """Session configured like the application's (no autoflush, no expiry on commit)."""
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def test_verifier() -> MockJwtVerifier:
    """Provide a test token verifier."""
    return MockJwtVerifier()


@pytest.fixture
def app(engine: Engine, publisher: RecordingPublisher, test_verifier: MockJwtVerifier):
    """App with auth middleware (mock verifier), the test engine and publisher."""
    return create_app(token_verifier=test_verifier, engine=engine, publisher=publisher)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client with auth middleware.

    Use auth_headers() from tests.helpers to authenticate requests.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def public_client(
    engine: Engine, publisher: RecordingPublisher
) -> Generator[TestClient, None, None]:
    """Client for an app without auth middleware."""
    app = create_app(skip_auth_middleware=True, engine=engine, publisher=publisher)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def test_user_id() -> UUID:
    """Generate a random UUID for a test user."""
    return uuid4()


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
