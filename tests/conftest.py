"""
Shared fixtures: a manually advanced clock, a throwaway database and a fully
wired service bundle with pinned daily ids.
"""

import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone

import pytest

# Keep any module-level DB_PATH default away from the working tree
os.environ.setdefault('DB_PATH', os.path.join(tempfile.mkdtemp(), 'mutualstate_default.db'))

from mutualstate.core.clock import DayClock
from mutualstate.core.notifications import NotificationSink
from mutualstate.core.services import build_services

# 11:00 local time (UTC+5) on 2024-01-10; next reset is 2024-01-10 19:00 UTC
START = datetime(2024, 1, 10, 6, 0, tzinfo=timezone.utc)

KEY_A = "11111111"
KEY_B = "22222222"
KEY_C = "33333333"


class RecordingSink(NotificationSink):
    """Keeps every posted system message for assertions."""

    def __init__(self):
        self.posted = []
        self._lock = threading.Lock()

    def post(self, conversation_key, text):
        with self._lock:
            self.posted.append((conversation_key, text))


class ManualTime:
    """Callable "now" that only moves when a test moves it."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)

    def set(self, value: datetime):
        self.current = value


@pytest.fixture
def manual_time():
    return ManualTime()


@pytest.fixture
def clock(manual_time):
    return DayClock(offset_hours=5, now_fn=manual_time)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "mutualstate_test.db")


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def services(db_path, clock, sink):
    bundle = build_services(db_path=db_path, clock=clock, sink=sink)
    yield bundle
    bundle.close()


@pytest.fixture
def actors(services):
    """Three actors with known daily ids for today."""
    keys = {"alice": KEY_A, "bob": KEY_B, "carol": KEY_C}
    for actor_id, key in keys.items():
        services.identity.assign(actor_id, key)
    return keys


@pytest.fixture
def rotate(services):
    """Pin a new set of daily ids (used after crossing a reset)."""
    def _rotate(keys):
        for actor_id, key in keys.items():
            services.identity.assign(actor_id, key)
        return keys
    return _rotate
