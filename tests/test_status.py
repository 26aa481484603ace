"""
Live status projection tests.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from mutualstate.core.engine import HighlightTarget
from mutualstate.core.errors import NotFoundError

KEY_A = "11111111"
KEY_B = "22222222"

MIDNIGHT = datetime(2024, 1, 10, 19, 0, tzinfo=timezone.utc)


class TestSnapshot:
    """One-shot folds of ledger entries and the shared entity."""

    def test_empty(self, services, actors):
        snapshot = services.status.snapshot("alice", KEY_B, "favorite")

        assert not snapshot.favorited_by_me
        assert not snapshot.favorited_by_other
        assert not snapshot.is_mutual
        assert not snapshot.is_locked
        assert snapshot.lock_expires_at is None
        assert snapshot.streak_count == 0

    def test_each_side_sees_the_other(self, services, actors):
        services.engine.apply("alice", KEY_B, "add", "favorite")

        mine = services.status.snapshot("alice", KEY_B, "favorite")
        theirs = services.status.snapshot("bob", KEY_A, "favorite")

        assert mine.favorited_by_me and not mine.favorited_by_other
        assert theirs.favorited_by_other and not theirs.favorited_by_me

    def test_mutual_and_locked(self, services, actors):
        services.engine.apply("alice", KEY_B, "add", "favorite")
        services.engine.apply("bob", KEY_A, "add", "favorite")

        snapshot = services.status.snapshot("alice", KEY_B, "favorite")

        assert snapshot.is_mutual
        assert snapshot.is_locked
        assert snapshot.lock_expires_at == MIDNIGHT
        assert snapshot.streak_count == 1

    def test_lock_recomputed_from_clock(self, services, actors, manual_time):
        services.engine.apply("alice", KEY_B, "add", "favorite")
        services.engine.apply("bob", KEY_A, "add", "favorite")
        manual_time.set(MIDNIGHT)

        # The daily id expired as well, so pin it again before reading
        services.identity.assign("alice", KEY_A)
        services.identity.assign("bob", KEY_B)
        snapshot = services.status.snapshot("alice", KEY_B, "favorite")

        assert not snapshot.is_locked
        assert snapshot.streak_count == 1

    def test_highlight_snapshot(self, services, actors):
        content = HighlightTarget("conv1", "msg1", "hello")
        services.engine.apply("alice", KEY_B, "add", "highlight", content=content)
        services.engine.apply("bob", KEY_A, "add", "highlight", content=content)

        snapshot = services.status.snapshot("alice", KEY_B, "highlight", HighlightTarget("conv1", "msg1"))

        assert snapshot.is_mutual
        assert snapshot.is_locked
        assert snapshot.streak_count == 0

    def test_unresolvable_pair(self, services, actors):
        with pytest.raises(NotFoundError):
            services.status.snapshot("alice", "99999999", "favorite")

    def test_to_dict(self, services, actors):
        services.engine.apply("alice", KEY_B, "add", "favorite")
        data = services.status.snapshot("alice", KEY_B, "favorite").to_dict()

        assert data == {
            "favorited_by_me": True,
            "favorited_by_other": False,
            "is_mutual": False,
            "is_locked": False,
            "lock_expires_at": None,
            "streak_count": 0,
        }


class TestSubscription:
    """Subscribers get a snapshot immediately and after every relevant commit."""

    def test_initial_and_updates(self, services, actors):
        seen = []
        subscription = services.status.subscribe("alice", KEY_B, "favorite", seen.append)

        services.engine.apply("alice", KEY_B, "add", "favorite")
        services.engine.apply("bob", KEY_A, "add", "favorite")

        assert not seen[0].favorited_by_me
        assert seen[-1].is_mutual
        assert seen[-1].streak_count == 1
        assert subscription.latest == seen[-1]
        subscription.close()

    def test_unrelated_changes_are_ignored(self, services, actors):
        seen = []
        subscription = services.status.subscribe("alice", KEY_B, "favorite", seen.append)

        services.engine.apply("carol", KEY_B, "add", "favorite")

        assert len(seen) == 1
        subscription.close()

    def test_close_stops_updates(self, services, actors):
        seen = []
        subscription = services.status.subscribe("alice", KEY_B, "favorite", seen.append)
        subscription.close()

        services.engine.apply("alice", KEY_B, "add", "favorite")

        assert len(seen) == 1

    def test_refresh_picks_up_lock_expiry(self, services, actors, manual_time):
        services.engine.apply("alice", KEY_B, "add", "favorite")
        services.engine.apply("bob", KEY_A, "add", "favorite")
        subscription = services.status.subscribe("alice", KEY_B, "favorite", lambda s: None)
        assert subscription.latest.is_locked

        manual_time.set(MIDNIGHT)
        assert not subscription.refresh().is_locked
        subscription.close()

    def test_failing_callback_does_not_break_writers(self, services, actors):
        def broken(snapshot):
            raise RuntimeError("ui went away")

        subscription = services.status.subscribe("alice", KEY_B, "favorite", broken)
        result = services.engine.apply("alice", KEY_B, "add", "favorite")

        assert result.success
        assert subscription.latest.favorited_by_me
        subscription.close()


class TestDeliveryOrder:
    """Late change notifications never overwrite a newer view of a document."""

    def hold_notifications(self, services):
        held = []
        with patch.object(services.store, "_notify", side_effect=held.append):
            services.engine.apply("alice", KEY_B, "add", "favorite")
            services.engine.apply("alice", KEY_B, "remove", "favorite")
        return held

    def test_stale_write_after_delete_is_dropped(self, services, actors):
        seen = []
        subscription = services.status.subscribe("alice", KEY_B, "favorite", seen.append)
        added, removed = self.hold_notifications(services)

        services.store._notify(removed)
        services.store._notify(added)

        assert not subscription.latest.favorited_by_me
        assert [s.favorited_by_me for s in seen] == [False, False]
        subscription.close()

    def test_notification_older_than_initial_read_is_dropped(self, services, actors):
        added, _ = self.hold_notifications(services)
        seen = []
        subscription = services.status.subscribe("alice", KEY_B, "favorite", seen.append)

        services.store._notify(added)

        assert not subscription.latest.favorited_by_me
        assert len(seen) == 1
        subscription.close()
