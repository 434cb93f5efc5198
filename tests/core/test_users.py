"""Tests for UserRepository and the user/schedule models."""

import pytest

from digest_spine.core.errors import RecordNotFoundError, ScheduleError, VersionConflictError
from digest_spine.core.models import Schedule, UserRecord
from digest_spine.core.timestamps import from_iso8601


class TestUserRepository:
    """Test version-checked persistence."""

    def test_get_missing_returns_none(self, users):
        """Unknown ids load as None."""
        assert users.get("nobody") is None

    def test_insert_and_get(self, users, make_user, schedule_doc):
        """Inserted documents round-trip through JSON."""
        make_user("u1", [schedule_doc("s1")])

        loaded = users.get("u1")
        assert loaded.version == 0
        assert loaded.email == "u1@example.com"
        assert loaded.doc["scheduledSummaries"][0]["id"] == "s1"

    def test_save_bumps_version(self, users, make_user):
        """A successful save increments the version by one."""
        make_user("u1")
        user = users.get("u1")

        saved = users.save(user, {**user.doc, "note": "hi"})

        assert saved.version == 1
        assert users.get("u1").version == 1
        assert users.get("u1").doc["note"] == "hi"

    def test_stale_save_conflicts(self, users, make_user):
        """Saving from a stale read raises VersionConflictError."""
        make_user("u1")
        first = users.get("u1")
        second = users.get("u1")

        users.save(first, {"a": 1})
        with pytest.raises(VersionConflictError) as exc_info:
            users.save(second, {"b": 2})

        assert exc_info.value.retryable is True
        assert exc_info.value.context.user_id == "u1"
        assert users.get("u1").doc == {"a": 1}

    def test_save_deleted_record(self, users, make_user, db_conn):
        """Saving a row that vanished raises RecordNotFoundError."""
        make_user("u1")
        user = users.get("u1")
        db_conn.execute("DELETE FROM users WHERE id = 'u1'")
        db_conn.commit()

        with pytest.raises(RecordNotFoundError):
            users.save(user, {"a": 1})

    def test_list_with_schedules(self, users, make_user, schedule_doc):
        """Only users with a non-empty schedule list are returned."""
        make_user("u1", [schedule_doc("s1")])
        make_user("u2", [])
        make_user("u3")

        assert [u.id for u in users.list_with_schedules()] == ["u1"]


class TestModels:
    """Test Schedule and UserRecord views over the document."""

    def test_schedule_from_dict(self, schedule_doc):
        """camelCase keys map onto the dataclass."""
        data = schedule_doc("s1", "07:30", ["Monday", "Friday"], last_run="2026-01-05T07:30:00Z")
        schedule = Schedule.from_dict(data)

        assert schedule.id == "s1"
        assert schedule.time == "07:30"
        assert schedule.days == ["Monday", "Friday"]
        assert schedule.is_enabled is True
        assert schedule.last_run == from_iso8601("2026-01-05T07:30:00+00:00")

    def test_schedule_defaults_disabled(self):
        """A schedule without isEnabled is not enabled."""
        schedule = Schedule.from_dict({"id": "s1"})
        assert schedule.is_enabled is False
        assert schedule.has_days is False
        assert schedule.last_run is None

    def test_schedule_to_dict(self, schedule_doc):
        """to_dict writes camelCase keys back."""
        data = Schedule.from_dict(schedule_doc("s1")).to_dict()
        assert data["isEnabled"] is True
        assert data["lastRun"] is None

    def test_user_timezone_default(self):
        """Missing preferences fall back to UTC."""
        assert UserRecord(id="u1").timezone == "UTC"
        assert UserRecord(id="u1", doc={"preferences": {"timezone": None}}).timezone == "UTC"

    def test_user_timezone(self):
        """The zone comes from preferences.timezone."""
        user = UserRecord(id="u1", doc={"preferences": {"timezone": "Europe/Berlin"}})
        assert user.timezone == "Europe/Berlin"

    def test_get_schedule(self, schedule_doc):
        """Schedules are addressed by id."""
        user = UserRecord(id="u1", doc={"scheduledSummaries": [schedule_doc("s1")]})
        assert user.get_schedule("s1").id == "s1"
        assert user.get_schedule("s2") is None

    def test_unreadable_last_run_raises_schedule_error(self, schedule_doc):
        """A stored lastRun that is not ISO 8601 surfaces as ScheduleError."""
        with pytest.raises(ScheduleError) as exc_info:
            Schedule.from_dict(schedule_doc("s1", last_run="not-a-timestamp"))

        assert exc_info.value.context.schedule_id == "s1"
        assert isinstance(exc_info.value.cause, ValueError)

    def test_missing_id_raises_schedule_error(self):
        with pytest.raises(ScheduleError):
            Schedule.from_dict({"time": "06:00", "days": ["Monday"]})

    def test_schedule_entries_skip_non_objects(self, schedule_doc):
        """Only object entries are returned, and get_schedule skips id-less ones."""
        user = UserRecord(
            id="u1",
            doc={"scheduledSummaries": ["junk", {"time": "06:00"}, schedule_doc("s1")]},
        )

        assert len(user.schedule_entries()) == 2
        assert user.get_schedule("s1").id == "s1"
