"""Route-level tests for share-link chat access.

Tests cover:
- guests join, post, list and report receipts with a guest_name
- a signed-in visitor acts as themselves
- the creator cannot join through their own share link
- shares without chat, unknown/inactive tokens
- approval-gated projects route guests through join requests
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from reelroom.db.models import ProjectChatMember
from tests.factories import create_message, create_profile, create_project, create_share
from tests.helpers import auth_headers


@pytest.fixture
def shared(db_session: Session):
    """(project_id, creator_id, token) for a chat-enabled share link."""
    creator_id = create_profile(db_session, full_name="Cass Creator")
    project_id = create_project(db_session, creator_id)
    share = create_share(db_session, project_id, creator_id, can_chat=True, token="client-link")
    return project_id, creator_id, share.share_token


class TestGuestFlow:
    def test_guest_joins_posts_and_lists(self, client: TestClient, shared):
        project_id, _, token = shared

        joined = client.post(f"/shared/{token}/chat-members", json={"guest_name": "Dana"})
        sent = client.post(
            f"/shared/{token}/messages", json={"guest_name": "Dana", "content": "Looks great"}
        )
        listed = client.get(f"/shared/{token}/messages", params={"guest_name": "Dana"})

        assert joined.status_code == 201
        assert joined.json()["data"]["guest_name"] == "Dana"
        assert joined.json()["data"]["user_id"] is None
        assert sent.status_code == 201
        assert sent.json()["data"]["sender_id"] == "guest:Dana"
        assert sent.json()["data"]["sender_name"] == "Dana"
        contents = [m["content"] for m in listed.json()["data"] if not m["is_system_message"]]
        assert contents == ["Looks great"]
        assert listed.json()["page"]["next_cursor"] is None

    def test_guest_must_join_before_posting(self, client: TestClient, shared):
        _, _, token = shared

        response = client.post(
            f"/shared/{token}/messages", json={"guest_name": "Stranger", "content": "hi"}
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_CHAT_ACCESS_DENIED"

    def test_guest_name_required(self, client: TestClient, shared):
        _, _, token = shared

        response = client.post(f"/shared/{token}/chat-members", json={})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_IDENTITY"

    def test_guest_reads_creator_message(
        self, client: TestClient, db_session: Session, shared
    ):
        project_id, creator_id, token = shared
        client.post(f"/shared/{token}/chat-members", json={"guest_name": "Dana"})
        message_id = create_message(db_session, project_id, str(creator_id), "v2 uploaded")

        response = client.put(
            f"/shared/{token}/messages/{message_id}/status",
            json={"guest_name": "Dana", "status": "read"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["read_by"] == ["guest:Dana"]
        assert response.json()["data"]["status"] == "read"

    def test_receipt_for_other_project_message_is_404(
        self, client: TestClient, db_session: Session, shared
    ):
        _, _, token = shared
        other_creator = create_profile(db_session)
        other_project = create_project(db_session, other_creator)
        message_id = create_message(db_session, other_project, str(other_creator), "private")

        response = client.put(
            f"/shared/{token}/messages/{message_id}/status",
            json={"guest_name": "Dana", "status": "delivered"},
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_MESSAGE_NOT_FOUND"


class TestSignedInVisitor:
    def test_visitor_joins_as_registered_user(
        self, client: TestClient, db_session: Session, shared
    ):
        _, _, token = shared
        visitor = create_profile(db_session, full_name="Vic Visitor")

        response = client.post(
            f"/shared/{token}/chat-members",
            json={"guest_name": "ignored"},
            headers=auth_headers(visitor),
        )

        data = response.json()["data"]
        assert response.status_code == 201
        assert data["user_id"] == str(visitor)
        assert data["guest_name"] is None
        assert data["display_name"] == "Vic Visitor"

    def test_creator_cannot_join_through_own_share(
        self, client: TestClient, db_session: Session, shared
    ):
        _, creator_id, token = shared

        response = client.post(
            f"/shared/{token}/chat-members", json={}, headers=auth_headers(creator_id)
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E_CREATOR_SHARE_JOIN"
        assert db_session.query(ProjectChatMember).count() == 0


class TestShareRestrictions:
    def test_share_without_chat(self, client: TestClient, db_session: Session):
        creator_id = create_profile(db_session)
        project_id = create_project(db_session, creator_id)
        create_share(db_session, project_id, creator_id, can_chat=False, token="view-only")

        response = client.post("/shared/view-only/chat-members", json={"guest_name": "Dana"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_SHARE_CHAT_FORBIDDEN"

    def test_unknown_token(self, client: TestClient):
        response = client.get(f"/shared/{uuid4().hex}/messages", params={"guest_name": "Dana"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_SHARE_NOT_FOUND"

    def test_inactive_token(self, client: TestClient, db_session: Session):
        creator_id = create_profile(db_session)
        project_id = create_project(db_session, creator_id)
        create_share(db_session, project_id, creator_id, is_active=False, token="switched-off")

        response = client.post("/shared/switched-off/chat-members", json={"guest_name": "Dana"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_SHARE_INACTIVE"


class TestGatedSharedChat:
    def test_guest_requests_then_gets_approved(self, client: TestClient, db_session: Session):
        creator_id = create_profile(db_session)
        project_id = create_project(db_session, creator_id, chat_requires_approval=True)
        create_share(db_session, project_id, creator_id, token="gated")

        direct = client.post("/shared/gated/chat-members", json={"guest_name": "Dana"})
        requested = client.post("/shared/gated/chat-join-requests", json={"guest_name": "Dana"})
        request_id = requested.json()["data"]["id"]
        approved = client.post(
            f"/projects/{project_id}/chat-join-requests/{request_id}/approve",
            headers=auth_headers(creator_id),
        )
        posted = client.post(
            "/shared/gated/messages", json={"guest_name": "Dana", "content": "Thanks!"}
        )

        assert direct.status_code == 403
        assert direct.json()["error"]["code"] == "E_JOIN_APPROVAL_REQUIRED"
        assert requested.status_code == 201
        assert requested.json()["data"]["guest_name"] == "Dana"
        assert approved.json()["data"]["status"] == "approved"
        assert posted.status_code == 201
