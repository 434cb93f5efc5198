"""Tests for weekday + local-time recurrence matching."""

from datetime import UTC, datetime

import pytest

from digest_spine.core.errors import ScheduleError
from digest_spine.scheduling.recurrence import (
    is_due,
    localize,
    parse_time_of_day,
    resolve_timezone,
)

MONDAY = datetime(2026, 1, 5, tzinfo=UTC)


def at(hour: int, minute: int, day: datetime = MONDAY) -> datetime:
    return day.replace(hour=hour, minute=minute)


class TestIsDue:
    """Test the due window in UTC."""

    def test_inside_window(self):
        """06:00 Monday is due at 06:03 Monday."""
        assert is_due("06:00", ["Monday"], "UTC", at(6, 3)) is True

    def test_outside_window(self):
        """06:00 Monday is not due at 06:08 Monday."""
        assert is_due("06:00", ["Monday"], "UTC", at(6, 8)) is False

    def test_window_edges_inclusive(self):
        """The window is [time - 5, time + 5] minutes."""
        assert is_due("06:00", ["Monday"], "UTC", at(5, 55)) is True
        assert is_due("06:00", ["Monday"], "UTC", at(6, 5)) is True
        assert is_due("06:00", ["Monday"], "UTC", at(5, 54)) is False
        assert is_due("06:00", ["Monday"], "UTC", at(6, 6)) is False

    def test_wrong_weekday(self):
        assert is_due("06:00", ["Tuesday", "Friday"], "UTC", at(6, 0)) is False

    def test_empty_days_never_due(self):
        assert is_due("06:00", [], "UTC", at(6, 0)) is False

    def test_custom_tolerance(self):
        assert is_due("06:00", ["Monday"], "UTC", at(6, 8), tolerance_minutes=10) is True

    def test_no_midnight_wrap(self):
        """A 23:58 Monday schedule is not matched at 00:02 Tuesday."""
        tuesday = datetime(2026, 1, 6, tzinfo=UTC)
        assert is_due("23:58", ["Monday", "Tuesday"], "UTC", at(0, 2, tuesday)) is False

    def test_malformed_time(self):
        """Bad time strings raise ScheduleError."""
        with pytest.raises(ScheduleError):
            is_due("6am", ["Monday"], "UTC", at(6, 0))

    def test_time_out_of_range(self):
        with pytest.raises(ScheduleError):
            is_due("24:00", ["Monday"], "UTC", at(6, 0))


class TestIsDueTimezones:
    """Test evaluation in the user's zone."""

    def test_new_york_winter(self):
        """06:00 in New York (UTC-5 in January) is 11:00 UTC."""
        assert is_due("06:00", ["Monday"], "America/New_York", at(11, 3)) is True
        assert is_due("06:00", ["Monday"], "America/New_York", at(6, 3)) is False

    def test_weekday_taken_locally(self):
        """02:00 UTC Monday is still Sunday evening in New York."""
        assert is_due("21:00", ["Sunday"], "America/New_York", at(2, 0)) is True
        assert is_due("21:00", ["Monday"], "America/New_York", at(2, 0)) is False

    def test_across_dst_start(self):
        """After the spring-forward change 06:00 local is 10:00 UTC."""
        monday_after_dst = datetime(2026, 3, 9, tzinfo=UTC)
        assert is_due("06:00", ["Monday"], "America/New_York", at(10, 0, monday_after_dst))
        assert not is_due("06:00", ["Monday"], "America/New_York", at(11, 0, monday_after_dst))

    def test_unknown_timezone_falls_back_to_utc(self):
        assert is_due("06:00", ["Monday"], "Mars/Olympus", at(6, 3)) is True

    def test_missing_timezone_is_utc(self):
        assert is_due("06:00", ["Monday"], None, at(6, 3)) is True


class TestHelpers:
    """Test parsing and localisation helpers."""

    def test_parse_time_of_day(self):
        assert parse_time_of_day("00:00") == 0
        assert parse_time_of_day("06:30") == 390
        assert parse_time_of_day("23:59") == 1439

    @pytest.mark.parametrize("value", ["", "0630", "06:30:00", "ab:cd", "12:60", None])
    def test_parse_rejects(self, value):
        with pytest.raises(ScheduleError):
            parse_time_of_day(value)

    def test_resolve_timezone(self):
        assert resolve_timezone("") is UTC
        assert resolve_timezone("Not/AZone") is UTC
        assert str(resolve_timezone("Europe/Berlin")) == "Europe/Berlin"

    def test_localize(self):
        moment = localize(at(23, 30), "Asia/Tokyo")
        assert moment.weekday == "Tuesday"
        assert moment.minute_of_day == 8 * 60 + 30
