"""
Day clock tests - Day Keys, reset boundaries and countdown formatting.
"""

from datetime import datetime, timedelta, timezone

from mutualstate.core.clock import DayClock, ensure_utc, format_countdown, parse_day_key, yesterday


class TestDayKeys:
    """Day Keys are computed in the fixed reset offset, not in UTC."""

    def test_today_uses_offset(self, clock):
        assert clock.today() == "2024-01-10"

    def test_late_utc_evening_is_next_local_day(self, clock):
        # 20:30 UTC is 01:30 the next morning at UTC+5
        instant = datetime(2024, 1, 10, 20, 30, tzinfo=timezone.utc)
        assert clock.day_key(instant) == "2024-01-11"

    def test_day_changes_exactly_at_boundary(self, clock, manual_time):
        manual_time.set(datetime(2024, 1, 10, 18, 59, 59, tzinfo=timezone.utc))
        assert clock.today() == "2024-01-10"

        manual_time.set(datetime(2024, 1, 10, 19, 0, 0, tzinfo=timezone.utc))
        assert clock.today() == "2024-01-11"

    def test_naive_now_is_taken_as_utc(self):
        clock = DayClock(offset_hours=5, now_fn=lambda: datetime(2024, 1, 10, 20, 0))
        assert clock.now().tzinfo == timezone.utc
        assert clock.today() == "2024-01-11"

    def test_other_offsets(self):
        instant = datetime(2024, 1, 10, 3, 0, tzinfo=timezone.utc)
        assert DayClock(offset_hours=-5, now_fn=lambda: instant).today() == "2024-01-09"
        assert DayClock(offset_hours=0, now_fn=lambda: instant).today() == "2024-01-10"


class TestYesterday:
    """yesterday() is calendar arithmetic on Day Keys."""

    def test_simple(self):
        assert yesterday("2024-01-10") == "2024-01-09"

    def test_year_boundary(self):
        assert yesterday("2024-01-01") == "2023-12-31"

    def test_leap_day(self):
        assert yesterday("2024-03-01") == "2024-02-29"
        assert yesterday("2023-03-01") == "2023-02-28"

    def test_parse_day_key(self):
        assert parse_day_key("2024-02-29").day == 29


class TestBoundary:
    """The next reset is the next local midnight, expressed in UTC."""

    def test_boundary_of_next_day(self, clock):
        assert clock.boundary_of_next_day() == datetime(2024, 1, 10, 19, 0, tzinfo=timezone.utc)

    def test_boundary_just_after_midnight(self, clock, manual_time):
        manual_time.set(datetime(2024, 1, 10, 19, 0, 1, tzinfo=timezone.utc))
        assert clock.boundary_of_next_day() == datetime(2024, 1, 11, 19, 0, tzinfo=timezone.utc)

    def test_start_of_today(self, clock):
        assert clock.start_of_today() == datetime(2024, 1, 9, 19, 0, tzinfo=timezone.utc)

    def test_time_until_boundary(self, clock, manual_time):
        assert clock.time_until_boundary() == timedelta(hours=13)

        manual_time.advance(hours=12, minutes=30)
        assert clock.time_until_boundary() == timedelta(minutes=30)


class TestFormatting:
    """Countdown rendering and UTC normalization."""

    def test_format_countdown(self):
        assert format_countdown(timedelta(hours=2, minutes=5, seconds=30)) == "2h 5m"
        assert format_countdown(timedelta(minutes=59)) == "0h 59m"

    def test_format_countdown_never_negative(self):
        assert format_countdown(timedelta(minutes=-10)) == "0h 0m"

    def test_ensure_utc_converts_offsets(self):
        local = datetime(2024, 1, 11, 0, 0, tzinfo=timezone(timedelta(hours=5)))
        assert ensure_utc(local) == datetime(2024, 1, 10, 19, 0, tzinfo=timezone.utc)
        assert ensure_utc(local).tzinfo == timezone.utc
