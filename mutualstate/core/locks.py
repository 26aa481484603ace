"""
Lock policy for shared entities.

Locks always expire at the next daily reset measured when the lock is set,
so a mutual event just before midnight yields a short lock. The stored flag
is only a hint written at transition time; callers must go through
is_locked / is_entity_locked.
"""

from datetime import datetime
from typing import Optional, Union

from .clock import DayClock, ensure_utc
from .models import Connection, QueuedStory


def is_locked(locked_flag: bool, lock_expires_at: Optional[datetime], now: datetime) -> bool:
    if not locked_flag or lock_expires_at is None:
        return False
    return ensure_utc(lock_expires_at) > ensure_utc(now)


def is_entity_locked(entity: Optional[Union[Connection, QueuedStory]], now: datetime) -> bool:
    if entity is None:
        return False
    return is_locked(entity.locked_flag, entity.lock_expires_at, now)


def new_lock_expiry(clock: DayClock) -> datetime:
    return clock.boundary_of_next_day()
