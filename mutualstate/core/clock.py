"""
Day clock - the single source of "now", "today" and the next daily reset.

Every lock expiry and streak comparison goes through DayClock so that no two
components can disagree about which day it is near midnight.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional

from .config import DAY_RESET_UTC_OFFSET_HOURS

DAY_KEY_FORMAT = "%Y-%m-%d"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_day_key(day_key: str) -> date:
    return datetime.strptime(day_key, DAY_KEY_FORMAT).date()


def yesterday(day_key: str) -> str:
    """Day Key of the previous calendar day (date arithmetic, not 24h)."""
    return (parse_day_key(day_key) - timedelta(days=1)).strftime(DAY_KEY_FORMAT)


def format_countdown(delta: timedelta) -> str:
    """Render a remaining duration as 'Xh Ym'."""
    total_seconds = max(int(delta.total_seconds()), 0)
    hours, remainder = divmod(total_seconds, 3600)
    return f"{hours}h {remainder // 60}m"


class DayClock:
    """Wall clock evaluated in one fixed UTC offset."""

    def __init__(self, offset_hours: int = DAY_RESET_UTC_OFFSET_HOURS,
                 now_fn: Optional[Callable[[], datetime]] = None):
        self.offset_hours = offset_hours
        self.tz = timezone(timedelta(hours=offset_hours))
        self._now_fn = now_fn or _utc_now

    def now(self) -> datetime:
        return ensure_utc(self._now_fn())

    def local_now(self) -> datetime:
        return self.now().astimezone(self.tz)

    def day_key(self, instant: datetime) -> str:
        """Day Key of an arbitrary instant in the reset timezone."""
        return ensure_utc(instant).astimezone(self.tz).strftime(DAY_KEY_FORMAT)

    def today(self) -> str:
        return self.day_key(self.now())

    def boundary_of_next_day(self) -> datetime:
        """Next local midnight, returned as aware UTC."""
        local_today = self.local_now().date()
        midnight = datetime.combine(local_today + timedelta(days=1), time(0, 0), tzinfo=self.tz)
        return midnight.astimezone(timezone.utc)

    def start_of_today(self) -> datetime:
        """Most recent local midnight, returned as aware UTC."""
        midnight = datetime.combine(self.local_now().date(), time(0, 0), tzinfo=self.tz)
        return midnight.astimezone(timezone.utc)

    def time_until_boundary(self) -> timedelta:
        remaining = self.boundary_of_next_day() - self.now()
        return max(remaining, timedelta(0))
