"""
Review workflow tests - lock guard, approval window, rejection and the public feed.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from mutualstate.core.engine import HighlightTarget
from mutualstate.core.errors import ErrorKind
from mutualstate.core.models import APPROVED_STORIES

KEY_A = "11111111"
KEY_B = "22222222"

MIDNIGHT = datetime(2024, 1, 10, 19, 0, tzinfo=timezone.utc)


def queue_story(services, message_id="msg1", text="first light over the hills"):
    content = HighlightTarget("conv1", message_id, text)
    services.engine.apply("alice", KEY_B, "add", "highlight", content=content)
    result = services.engine.apply("bob", KEY_A, "add", "highlight", content=content)
    assert result.entity_created
    return result.entity_id


@pytest.fixture
def story_id(services, actors):
    return queue_story(services)


@pytest.fixture
def after_midnight(manual_time):
    manual_time.set(MIDNIGHT + timedelta(hours=1))


class TestApproval:
    """Approval is refused while the day-boundary lock is active."""

    def test_approve_blocked_while_locked(self, services, story_id):
        result = services.review.review(story_id, "approve", "admin1")

        assert not result.success
        assert result.error_kind == ErrorKind.LOCKED
        assert result.lock_expires_at == MIDNIGHT
        assert result.message.startswith("Story is still locked")
        assert services.review.get_story(story_id).status == "pending"
        assert services.store.count(APPROVED_STORIES) == 0

    def test_approve_after_boundary(self, services, story_id, after_midnight):
        now = services.clock.now()
        result = services.review.review(story_id, "approve", "admin1")

        assert result.success
        assert result.status == "approved"
        assert result.approved_story.expires_at == now + timedelta(hours=24)
        assert result.approved_story.content_snapshot.text == "first light over the hills"

        story = services.review.get_story(story_id)
        assert story.status == "approved"
        assert story.reviewed_by == "admin1"
        assert story.reviewed_at == now

    def test_approve_twice(self, services, story_id, after_midnight):
        services.review.review(story_id, "approve", "admin1")
        result = services.review.review(story_id, "approve", "admin1")

        assert result.error_kind == ErrorKind.INVALID_ARGUMENT
        assert result.message == "Story already approved"

    def test_unknown_story(self, services, actors):
        result = services.review.review("conv9_msg9", "approve", "admin1")
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_invalid_decision_and_admin(self, services, story_id):
        assert services.review.review(story_id, "publish", "admin1").error_kind == ErrorKind.INVALID_ARGUMENT
        assert services.review.review(story_id, "reject", " ").error_kind == ErrorKind.INVALID_ARGUMENT

    def test_write_failure_returns_unavailable(self, services, story_id, after_midnight, db_path):
        conn = sqlite3.connect(db_path)
        conn.execute(
            "CREATE TRIGGER fail_approved BEFORE INSERT ON documents WHEN NEW.collection = 'approved_stories' "
            "BEGIN SELECT RAISE(ABORT, 'database or disk is full'); END"
        )
        conn.commit()
        conn.close()

        result = services.review.review(story_id, "approve", "admin1")

        assert not result.success
        assert result.error_kind == ErrorKind.UNAVAILABLE
        assert services.review.get_story(story_id).status == "pending"
        assert services.store.count(APPROVED_STORIES) == 0


class TestRejection:
    """Rejection is allowed at any time."""

    def test_reject_while_locked_uses_default_reason(self, services, story_id):
        result = services.review.review(story_id, "reject", "admin1")

        assert result.success
        assert result.status == "rejected"
        story = services.review.get_story(story_id)
        assert story.rejection_reason == "Not approved for public feed"
        assert services.store.count(APPROVED_STORIES) == 0

    def test_reject_with_reason(self, services, story_id):
        services.review.review(story_id, "reject", "admin1", reason="Contains a phone number")
        assert services.review.get_story(story_id).rejection_reason == "Contains a phone number"

    def test_rejected_story_cannot_be_approved(self, services, story_id, after_midnight):
        services.review.review(story_id, "reject", "admin1")
        result = services.review.review(story_id, "approve", "admin1")

        assert result.error_kind == ErrorKind.INVALID_ARGUMENT
        assert result.message == "Story already rejected"


class TestFeeds:
    """Pending queue and public feed listings."""

    def test_list_pending_newest_first(self, services, actors, manual_time):
        first = queue_story(services, "msg1")
        manual_time.advance(minutes=5)
        second = queue_story(services, "msg2")

        assert [s.id for s in services.review.list_pending()] == [second, first]

        services.review.review(first, "reject", "admin1")
        assert [s.id for s in services.review.list_pending()] == [second]

    def test_public_feed_window(self, services, actors, manual_time):
        first = queue_story(services, "msg1")
        second = queue_story(services, "msg2")
        manual_time.set(MIDNIGHT + timedelta(hours=1))
        services.review.review(first, "approve", "admin1")
        manual_time.advance(hours=2)
        services.review.review(second, "approve", "admin1")

        assert [s.id for s in services.review.list_public()] == [second, first]
        assert [s.id for s in services.review.list_public(limit=1)] == [second]
        assert services.review.list_public(limit=0) == []

        # 24h after the first approval only the second is still visible
        manual_time.set(MIDNIGHT + timedelta(hours=25))
        assert [s.id for s in services.review.list_public()] == [second]

    def test_public_story_is_anonymous(self, services, story_id, after_midnight):
        services.review.review(story_id, "approve", "admin1")
        public = services.review.list_public()[0].to_dict()

        assert "participant_ids" not in public
        assert "conversation_id" not in public


class TestSweep:
    """Expired public stories are deleted by the sweep."""

    def test_sweep_expired(self, services, story_id, manual_time, after_midnight):
        services.review.review(story_id, "approve", "admin1")

        assert services.review.sweep_expired() == 0

        manual_time.advance(hours=24)
        assert services.review.sweep_expired() == 1
        assert services.store.count(APPROVED_STORIES) == 0
        assert services.review.sweep_expired() == 0

        # The queued record keeps its review history
        assert services.review.get_story(story_id).status == "approved"
