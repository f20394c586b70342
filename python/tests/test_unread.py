"""Service-layer tests for the unread counter.

Tests cover:
- counts after the watermark, and a missing watermark counting everything
- the viewer's own messages and membership system messages are not counted
- markProjectRead is monotonic, including when it loses the insert race
- previews, ordering and totals across projects
- the guest-via-share walkthrough end to end
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from reelroom.db.models import ProjectChatMember, ProjectLastRead
from reelroom.errors import ApiError, ApiErrorCode
from reelroom.identity import Guest, Registered
from reelroom.services import membership as membership_service
from reelroom.services import messages as messages_service
from reelroom.services import unread as unread_service
from tests.factories import (
    create_member,
    create_message,
    create_profile,
    create_project,
    create_share,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


def _count_for(result, project_id) -> int:
    return next(p.unread_count for p in result.projects if p.project_id == project_id)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def chat(db_session: Session):
    """Returns (project_id, creator_id, member_id) with one active member."""
    creator_id = create_profile(db_session, full_name="Dana Director")
    member_id = create_profile(db_session, full_name="Eli Editor")
    project_id = create_project(db_session, creator_id)
    create_member(db_session, project_id, user_id=member_id)
    return project_id, creator_id, member_id


# =============================================================================
# Counting
# =============================================================================


class TestUnreadFor:
    def test_missing_watermark_counts_everything(self, db_session: Session, chat):
        project_id, creator_id, member_id = chat
        create_message(db_session, project_id, str(creator_id), "one", created_at=at(1))
        create_message(db_session, project_id, str(creator_id), "two", created_at=at(2))

        result = unread_service.unread_for(db_session, member_id)

        assert _count_for(result, project_id) == 2
        assert result.total_unread == 2

    def test_only_messages_after_watermark_count(self, db_session: Session, chat):
        project_id, creator_id, member_id = chat
        create_message(db_session, project_id, str(creator_id), "old", created_at=at(1))
        unread_service.mark_project_read(db_session, project_id, member_id, now=at(5))
        create_message(db_session, project_id, str(creator_id), "new", created_at=at(9))

        result = unread_service.unread_for(db_session, member_id)

        assert _count_for(result, project_id) == 1

    def test_message_at_watermark_is_read(self, db_session: Session, chat):
        project_id, creator_id, member_id = chat
        create_message(db_session, project_id, str(creator_id), "edge", created_at=at(5))
        unread_service.mark_project_read(db_session, project_id, member_id, now=at(5))

        result = unread_service.unread_for(db_session, member_id)

        assert _count_for(result, project_id) == 0

    def test_own_messages_not_counted(self, db_session: Session, chat):
        project_id, _, member_id = chat
        create_message(db_session, project_id, str(member_id), "mine", created_at=at(1))

        result = unread_service.unread_for(db_session, member_id)

        assert _count_for(result, project_id) == 0

    def test_system_messages_not_counted(self, db_session: Session, chat):
        project_id, creator_id, member_id = chat
        create_message(
            db_session, project_id, str(creator_id), "joined", created_at=at(1),
            is_system_message=True,
        )

        result = unread_service.unread_for(db_session, member_id)

        summary = result.projects[0]
        assert summary.unread_count == 0
        assert summary.last_message_preview is None
        assert summary.last_message_at is None

    def test_removed_member_sees_no_project(self, db_session: Session, chat):
        project_id, creator_id, member_id = chat
        member_row = db_session.scalar(
            select(ProjectChatMember).where(ProjectChatMember.user_id == member_id)
        )
        membership_service.remove_member(db_session, project_id, member_row.id, creator_id)

        result = unread_service.unread_for(db_session, member_id)

        assert result.projects == []
        assert result.total_unread == 0

    def test_creator_counts_without_membership_row(self, db_session: Session, chat):
        project_id, creator_id, member_id = chat
        create_message(db_session, project_id, str(member_id), "for you", created_at=at(1))

        result = unread_service.unread_for(db_session, creator_id)

        assert _count_for(result, project_id) == 1

    def test_user_without_chats(self, db_session: Session):
        result = unread_service.unread_for(db_session, uuid4())

        assert result.projects == []
        assert result.total_unread == 0


class TestPreviewAndOrdering:
    def test_preview_is_latest_message_truncated(self, db_session: Session, chat):
        project_id, creator_id, member_id = chat
        create_message(db_session, project_id, str(creator_id), "first", created_at=at(1))
        long_text = "x" * 80
        create_message(db_session, project_id, str(creator_id), long_text, created_at=at(2))

        summary = unread_service.unread_for(db_session, member_id).projects[0]

        assert summary.last_message_preview == "x" * unread_service.PREVIEW_LENGTH
        assert summary.last_message_at == at(2)

    def test_projects_ordered_by_latest_message(self, db_session: Session):
        user_id = create_profile(db_session)
        quiet = create_project(db_session, user_id, name="Quiet")
        older = create_project(db_session, user_id, name="Older")
        newer = create_project(db_session, user_id, name="Newer")
        other = str(uuid4())
        create_message(db_session, older, other, "a", created_at=at(1))
        create_message(db_session, newer, other, "b", created_at=at(2))
        create_message(db_session, newer, other, "c", created_at=at(3))

        result = unread_service.unread_for(db_session, user_id)

        assert [p.project_id for p in result.projects] == [newer, older, quiet]
        assert result.total_unread == 3


# =============================================================================
# Watermark
# =============================================================================


class TestMarkProjectRead:
    def test_creates_watermark(self, db_session: Session, chat):
        project_id, _, member_id = chat

        out = unread_service.mark_project_read(db_session, project_id, member_id, now=at(10))

        assert out.last_read_at == at(10)
        rows = db_session.scalars(select(ProjectLastRead)).all()
        assert len(rows) == 1

    def test_watermark_never_moves_backward(self, db_session: Session, chat):
        project_id, _, member_id = chat
        unread_service.mark_project_read(db_session, project_id, member_id, now=at(20))

        out = unread_service.mark_project_read(db_session, project_id, member_id, now=at(10))

        assert out.last_read_at == at(20)

    def test_watermark_moves_forward(self, db_session: Session, chat):
        project_id, _, member_id = chat
        unread_service.mark_project_read(db_session, project_id, member_id, now=at(10))

        out = unread_service.mark_project_read(db_session, project_id, member_id, now=at(30))

        assert out.last_read_at == at(30)
        assert len(db_session.scalars(select(ProjectLastRead)).all()) == 1

    def test_outsider_is_denied(self, db_session: Session, chat):
        project_id, _, _ = chat

        with pytest.raises(ApiError) as exc:
            unread_service.mark_project_read(db_session, project_id, uuid4())

        assert exc.value.code == ApiErrorCode.E_CHAT_ACCESS_DENIED

    def test_unknown_project_is_404(self, db_session: Session, chat):
        _, _, member_id = chat

        with pytest.raises(ApiError) as exc:
            unread_service.mark_project_read(db_session, uuid4(), member_id)

        assert exc.value.code == ApiErrorCode.E_PROJECT_NOT_FOUND


class TestMarkProjectReadRace:
    @pytest.fixture
    def stale_watermark(self, monkeypatch):
        """The first watermark lookup misses a row a concurrent request committed."""
        real_lookup = unread_service._get_watermark
        calls = []

        def stale_lookup(db, project_id, user_id):
            calls.append(user_id)
            if len(calls) == 1:
                return None
            return real_lookup(db, project_id, user_id)

        monkeypatch.setattr(unread_service, "_get_watermark", stale_lookup)
        return calls

    def test_older_loser_does_not_move_the_winner_backward(
        self, db_session: Session, chat, stale_watermark
    ):
        project_id, _, member_id = chat
        db_session.add(
            ProjectLastRead(
                project_id=project_id,
                user_id=member_id,
                last_read_at=at(600),
                created_at=at(600),
                updated_at=at(600),
            )
        )
        db_session.commit()
        winner_id = db_session.scalars(select(ProjectLastRead.id)).one()

        out = unread_service.mark_project_read(db_session, project_id, member_id, now=at(0))

        assert out.last_read_at == at(600)
        assert len(stale_watermark) == 2
        rows = db_session.scalars(select(ProjectLastRead)).all()
        assert [r.id for r in rows] == [winner_id]
        assert rows[0].last_read_at == at(600)

    def test_newer_loser_advances_the_winning_row(
        self, db_session: Session, chat, stale_watermark
    ):
        project_id, _, member_id = chat
        unread_service.mark_project_read(db_session, project_id, member_id, now=at(600))
        stale_watermark.clear()

        out = unread_service.mark_project_read(db_session, project_id, member_id, now=at(900))

        assert out.last_read_at == at(900)
        assert len(db_session.scalars(select(ProjectLastRead)).all()) == 1



# =============================================================================
# Walkthrough
# =============================================================================


class TestGuestShareWalkthrough:
    def test_guest_message_unread_for_creator_until_marked_read(self, db_session: Session):
        creator_id = create_profile(db_session, full_name="Casey Creator")
        project_id = create_project(db_session, creator_id)
        share = create_share(db_session, project_id, creator_id, can_chat=True)

        member = membership_service.join_chat(
            db_session, project_id, Guest("Dana"), share_id=share.id
        )
        assert member.guest_name == "Dana"
        assert member.share_id == share.id
        assert member.is_active is True

        shared_members = db_session.scalars(
            select(ProjectChatMember).where(ProjectChatMember.share_id == share.id)
        ).all()
        assert all(m.user_id != creator_id for m in shared_members)

        messages_service.append_message(db_session, project_id, Guest("Dana"), "m1", now=at(10))
        assert _count_for(unread_service.unread_for(db_session, creator_id), project_id) == 1

        unread_service.mark_project_read(db_session, project_id, creator_id, now=at(20))
        assert _count_for(unread_service.unread_for(db_session, creator_id), project_id) == 0

        messages_service.append_message(db_session, project_id, Guest("Dana"), "m2", now=at(30))
        assert _count_for(unread_service.unread_for(db_session, creator_id), project_id) == 1

    def test_creator_share_join_leaves_no_row(self, db_session: Session):
        creator_id = create_profile(db_session)
        project_id = create_project(db_session, creator_id)
        share = create_share(db_session, project_id, creator_id)

        with pytest.raises(ApiError):
            membership_service.join_chat(
                db_session, project_id, Registered(creator_id), share_id=share.id
            )

        rows = db_session.scalars(
            select(ProjectChatMember).where(ProjectChatMember.share_id == share.id)
        ).all()
        assert rows == []
