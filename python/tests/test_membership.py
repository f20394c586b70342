"""Service-layer tests for the membership registry.

Tests cover:
- join: direct and share-link joins, idempotency, guests
- the creator/share-link guard
- approval gate and removed-member rule
- a join that loses the insert race returns the winning row
- leave / remove as soft deletes with system messages
- chat access status precedence
- creator membership backfill
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from reelroom.db.models import Message, ProjectChatMember
from reelroom.errors import ApiError, ApiErrorCode
from reelroom.identity import Guest, Registered
from reelroom.services import membership as membership_service
from reelroom.services.realtime import CHAT_MEMBER_JOINED, CHAT_MEMBER_REMOVED, MESSAGE_NEW
from tests.factories import create_member, create_profile, create_project, create_share

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def project(db_session: Session):
    """Returns (project_id, creator_id)."""
    creator_id = create_profile(db_session, full_name="Dana Director")
    return create_project(db_session, creator_id), creator_id


@pytest.fixture
def gated_project(db_session: Session):
    """A project whose chat requires approval. Returns (project_id, creator_id)."""
    creator_id = create_profile(db_session, full_name="Gina Gatekeeper")
    return create_project(db_session, creator_id, chat_requires_approval=True), creator_id


def _active_rows(db_session: Session, project_id) -> int:
    return db_session.scalar(
        select(func.count())
        .select_from(ProjectChatMember)
        .where(
            ProjectChatMember.project_id == project_id,
            ProjectChatMember.is_active == True,  # noqa: E712
        )
    )


def _system_types(db_session: Session, project_id) -> list[str]:
    return list(
        db_session.scalars(
            select(Message.system_message_type)
            .where(Message.project_id == project_id, Message.is_system_message.is_(True))
            .order_by(Message.created_at)
        )
    )


# =============================================================================
# Join
# =============================================================================


class TestJoinChat:
    def test_direct_join_creates_active_membership(self, db_session: Session, project):
        project_id, _ = project
        user_id = create_profile(db_session, full_name="Eli Editor")

        member = membership_service.join_chat(db_session, project_id, Registered(user_id))

        assert member.user_id == user_id
        assert member.is_active is True
        assert member.display_name == "Eli Editor"
        assert member.share_id is None

    def test_join_announces_with_system_message(self, db_session: Session, project, publisher):
        project_id, _ = project
        user_id = create_profile(db_session, full_name="Eli Editor")

        membership_service.join_chat(
            db_session, project_id, Registered(user_id), publisher=publisher
        )

        assert _system_types(db_session, project_id) == ["join"]
        assert publisher.names() == [CHAT_MEMBER_JOINED, MESSAGE_NEW]

    def test_join_is_idempotent(self, db_session: Session, project, publisher):
        project_id, _ = project
        user_id = create_profile(db_session)

        first = membership_service.join_chat(db_session, project_id, Registered(user_id))
        publisher.clear()
        second = membership_service.join_chat(
            db_session, project_id, Registered(user_id), publisher=publisher
        )

        assert first.id == second.id
        assert _active_rows(db_session, project_id) == 1
        assert _system_types(db_session, project_id) == ["join"]
        assert publisher.events == []

    def test_guest_joins_through_share(self, db_session: Session, project):
        project_id, creator_id = project
        share = create_share(db_session, project_id, creator_id)

        member = membership_service.join_chat(
            db_session, project_id, Guest("Client Sam"), share_id=share.id
        )

        assert member.guest_name == "Client Sam"
        assert member.user_id is None
        assert member.share_id == share.id
        assert member.display_name == "Client Sam"

    def test_guest_without_share_is_forbidden(self, db_session: Session, project):
        project_id, _ = project

        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(db_session, project_id, Guest("Client Sam"))

        assert exc.value.code == ApiErrorCode.E_SHARE_CHAT_FORBIDDEN

    def test_share_without_chat_is_forbidden(self, db_session: Session, project):
        project_id, creator_id = project
        share = create_share(db_session, project_id, creator_id, can_chat=False)

        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(
                db_session, project_id, Guest("Client Sam"), share_id=share.id
            )

        assert exc.value.code == ApiErrorCode.E_SHARE_CHAT_FORBIDDEN

    def test_expired_share_is_forbidden(self, db_session: Session, project):
        project_id, creator_id = project
        share = create_share(
            db_session,
            project_id,
            creator_id,
            expires_at=datetime.now(UTC) - timedelta(minutes=1),
        )

        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(
                db_session, project_id, Guest("Client Sam"), share_id=share.id
            )

        assert exc.value.code == ApiErrorCode.E_SHARE_CHAT_FORBIDDEN

    def test_share_from_another_project_is_forbidden(self, db_session: Session, project):
        project_id, creator_id = project
        other_project = create_project(db_session, creator_id, name="Other")
        share = create_share(db_session, other_project, creator_id)

        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(
                db_session, project_id, Guest("Client Sam"), share_id=share.id
            )

        assert exc.value.code == ApiErrorCode.E_SHARE_CHAT_FORBIDDEN

    def test_unknown_project_is_404(self, db_session: Session):
        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(db_session, uuid4(), Registered(uuid4()))

        assert exc.value.code == ApiErrorCode.E_PROJECT_NOT_FOUND


class TestCreatorShareGuard:
    def test_creator_cannot_join_through_share(self, db_session: Session, project):
        project_id, creator_id = project
        share = create_share(db_session, project_id, creator_id)

        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(
                db_session, project_id, Registered(creator_id), share_id=share.id
            )

        assert exc.value.code == ApiErrorCode.E_CREATOR_SHARE_JOIN
        assert exc.value.status_code == 409
        assert _active_rows(db_session, project_id) == 0

    def test_creator_may_join_directly(self, db_session: Session, project):
        project_id, creator_id = project

        member = membership_service.join_chat(db_session, project_id, Registered(creator_id))

        assert member.user_id == creator_id
        assert member.share_id is None

    def test_creator_bypasses_approval_gate(self, db_session: Session, gated_project):
        project_id, creator_id = gated_project

        member = membership_service.join_chat(db_session, project_id, Registered(creator_id))

        assert member.is_active is True


class TestApprovalAndRemoval:
    def test_gated_chat_requires_request(self, db_session: Session, gated_project):
        project_id, _ = gated_project
        user_id = create_profile(db_session)

        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(db_session, project_id, Registered(user_id))

        assert exc.value.code == ApiErrorCode.E_JOIN_APPROVAL_REQUIRED

    def test_gated_chat_blocks_share_join_too(self, db_session: Session, gated_project):
        project_id, creator_id = gated_project
        share = create_share(db_session, project_id, creator_id)

        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(
                db_session, project_id, Guest("Client Sam"), share_id=share.id
            )

        assert exc.value.code == ApiErrorCode.E_JOIN_APPROVAL_REQUIRED

    def test_removed_member_cannot_rejoin(self, db_session: Session, project):
        project_id, _ = project
        user_id = create_profile(db_session)
        create_member(db_session, project_id, user_id=user_id, is_active=False)

        with pytest.raises(ApiError) as exc:
            membership_service.join_chat(db_session, project_id, Registered(user_id))

        assert exc.value.code == ApiErrorCode.E_CHAT_MEMBER_REMOVED


class TestJoinRace:
    def test_lost_insert_race_returns_the_winning_membership(
        self, db_session: Session, project, publisher, monkeypatch
    ):
        project_id, _ = project
        user_id = create_profile(db_session)
        winner_id = create_member(db_session, project_id, user_id=user_id)
        real_lookup = membership_service.get_active_member
        calls = []

        def stale_lookup(db, pid, identity):
            calls.append(identity)
            if len(calls) == 1:
                return None
            return real_lookup(db, pid, identity)

        monkeypatch.setattr(membership_service, "get_active_member", stale_lookup)

        member = membership_service.join_chat(
            db_session, project_id, Registered(user_id), publisher=publisher
        )

        assert member.id == winner_id
        assert len(calls) == 2
        assert _active_rows(db_session, project_id) == 1
        assert _system_types(db_session, project_id) == []
        assert publisher.names() == []


# =============================================================================
# Leave / remove
# =============================================================================


class TestRemoveMember:
    def test_creator_removes_member(self, db_session: Session, project, publisher):
        project_id, creator_id = project
        user_id = create_profile(db_session, full_name="Eli Editor")
        member_id = create_member(db_session, project_id, user_id=user_id)

        out = membership_service.remove_member(
            db_session, project_id, member_id, creator_id, publisher=publisher
        )

        assert out.is_active is False
        assert out.removed_by == creator_id
        assert out.removed_at is not None
        assert _system_types(db_session, project_id) == ["leave"]
        assert publisher.names() == [CHAT_MEMBER_REMOVED, MESSAGE_NEW]

    def test_row_is_kept(self, db_session: Session, project):
        project_id, creator_id = project
        member_id = create_member(db_session, project_id, guest_name="Client Sam")

        membership_service.remove_member(db_session, project_id, member_id, creator_id)

        assert db_session.get(ProjectChatMember, member_id) is not None

    def test_non_creator_cannot_remove(self, db_session: Session, project):
        project_id, _ = project
        user_id = create_profile(db_session)
        create_member(db_session, project_id, user_id=user_id)
        target = create_member(db_session, project_id, guest_name="Client Sam")

        with pytest.raises(ApiError) as exc:
            membership_service.remove_member(db_session, project_id, target, user_id)

        assert exc.value.code == ApiErrorCode.E_FORBIDDEN

    def test_cannot_remove_self(self, db_session: Session, project):
        project_id, creator_id = project
        own = create_member(db_session, project_id, user_id=creator_id)

        with pytest.raises(ApiError) as exc:
            membership_service.remove_member(db_session, project_id, own, creator_id)

        assert exc.value.code == ApiErrorCode.E_CANNOT_REMOVE_SELF

    def test_already_removed_is_conflict(self, db_session: Session, project):
        project_id, creator_id = project
        member_id = create_member(db_session, project_id, guest_name="Client Sam")
        membership_service.remove_member(db_session, project_id, member_id, creator_id)

        with pytest.raises(ApiError) as exc:
            membership_service.remove_member(db_session, project_id, member_id, creator_id)

        assert exc.value.code == ApiErrorCode.E_MEMBER_ALREADY_REMOVED

    def test_member_of_other_project_is_404(self, db_session: Session, project):
        project_id, creator_id = project
        other_project = create_project(db_session, creator_id, name="Other")
        member_id = create_member(db_session, other_project, guest_name="Client Sam")

        with pytest.raises(ApiError) as exc:
            membership_service.remove_member(db_session, project_id, member_id, creator_id)

        assert exc.value.code == ApiErrorCode.E_MEMBER_NOT_FOUND


class TestLeaveChat:
    def test_member_leaves(self, db_session: Session, project):
        project_id, _ = project
        user_id = create_profile(db_session)
        create_member(db_session, project_id, user_id=user_id)

        out = membership_service.leave_chat(db_session, project_id, user_id)

        assert out.is_active is False
        assert out.removed_by == user_id
        assert _active_rows(db_session, project_id) == 0

    def test_creator_cannot_leave(self, db_session: Session, project):
        project_id, creator_id = project

        with pytest.raises(ApiError) as exc:
            membership_service.leave_chat(db_session, project_id, creator_id)

        assert exc.value.code == ApiErrorCode.E_CREATOR_CANNOT_LEAVE

    def test_non_member_cannot_leave(self, db_session: Session, project):
        project_id, _ = project

        with pytest.raises(ApiError) as exc:
            membership_service.leave_chat(db_session, project_id, uuid4())

        assert exc.value.code == ApiErrorCode.E_MEMBER_NOT_FOUND


# =============================================================================
# Listing / access status / backfill
# =============================================================================


class TestListMembers:
    def test_lists_active_members_only(self, db_session: Session, project):
        project_id, creator_id = project
        create_member(db_session, project_id, guest_name="Active Guest")
        create_member(db_session, project_id, guest_name="Gone Guest", is_active=False)

        members = membership_service.list_members(db_session, project_id, Registered(creator_id))

        assert [m.guest_name for m in members] == ["Active Guest"]

    def test_outsider_cannot_list(self, db_session: Session, project):
        project_id, _ = project

        with pytest.raises(ApiError) as exc:
            membership_service.list_members(db_session, project_id, Registered(uuid4()))

        assert exc.value.code == ApiErrorCode.E_CHAT_ACCESS_DENIED


class TestChatAccessStatus:
    def test_creator_is_admin(self, db_session: Session, project):
        project_id, creator_id = project

        status = membership_service.get_chat_access_status(db_session, project_id, creator_id)

        assert status.status == "admin"

    def test_active_member(self, db_session: Session, project):
        project_id, _ = project
        user_id = create_profile(db_session)
        member_id = create_member(db_session, project_id, user_id=user_id)

        status = membership_service.get_chat_access_status(db_session, project_id, user_id)

        assert status.status == "member"
        assert status.member_id == member_id

    def test_pending_request(self, db_session: Session, gated_project):
        project_id, _ = gated_project
        user_id = create_profile(db_session)
        request = membership_service.request_join(db_session, project_id, Registered(user_id))

        status = membership_service.get_chat_access_status(db_session, project_id, user_id)

        assert status.status == "pending"
        assert status.request_id == request.id

    def test_removed(self, db_session: Session, project):
        project_id, _ = project
        user_id = create_profile(db_session)
        create_member(db_session, project_id, user_id=user_id, is_active=False)

        status = membership_service.get_chat_access_status(db_session, project_id, user_id)

        assert status.status == "removed"

    def test_rejected(self, db_session: Session, gated_project):
        project_id, creator_id = gated_project
        user_id = create_profile(db_session)
        request = membership_service.request_join(db_session, project_id, Registered(user_id))
        membership_service.respond_to_join_request(
            db_session, project_id, request.id, False, creator_id
        )

        status = membership_service.get_chat_access_status(db_session, project_id, user_id)

        assert status.status == "rejected"

    def test_stranger_can_request(self, db_session: Session, project):
        project_id, _ = project

        status = membership_service.get_chat_access_status(db_session, project_id, uuid4())

        assert status.status == "can_request"


class TestCreatorBackfill:
    def test_backfill_creates_missing_creator_rows_once(self, db_session: Session):
        creator_a = create_profile(db_session)
        creator_b = create_profile(db_session)
        project_a = create_project(db_session, creator_a, name="A")
        project_b = create_project(db_session, creator_b, name="B")
        membership_service.ensure_creator_membership(db_session, project_b)

        created = membership_service.backfill_creator_memberships(db_session)
        again = membership_service.backfill_creator_memberships(db_session)

        assert created == 1
        assert again == 0
        assert _active_rows(db_session, project_a) == 1
        assert _active_rows(db_session, project_b) == 1
        assert _system_types(db_session, project_a) == []
