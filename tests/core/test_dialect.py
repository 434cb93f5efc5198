"""Tests for SQL dialects and timestamp helpers."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from digest_spine.core.dialect import PostgreSQLDialect, SQLiteDialect, get_dialect
from digest_spine.core.errors import ConfigError
from digest_spine.core.timestamps import from_iso8601, generate_ulid, to_iso8601


class TestDialect:
    """Test placeholder and upsert generation."""

    def test_sqlite_placeholders(self):
        dialect = SQLiteDialect()
        assert dialect.placeholder(3) == "?"
        assert dialect.placeholders(3) == "?, ?, ?"

    def test_postgres_placeholders(self):
        assert PostgreSQLDialect().placeholders(2) == "%s, %s"

    def test_conditional_upsert(self):
        sql = SQLiteDialect().conditional_upsert(
            "scheduler_leases",
            ["lock_id", "holder", "expires_at"],
            ["lock_id"],
            where="scheduler_leases.holder = ?",
        )

        assert sql == (
            "INSERT INTO scheduler_leases (lock_id, holder, expires_at) "
            "VALUES (?, ?, ?) "
            "ON CONFLICT (lock_id) DO UPDATE SET "
            "holder = excluded.holder, expires_at = excluded.expires_at "
            "WHERE scheduler_leases.holder = ?"
        )

    def test_postgres_upsert_uses_excluded_keyword(self):
        sql = PostgreSQLDialect().conditional_upsert("t", ["k", "v"], ["k"], where="true")
        assert "v = EXCLUDED.v" in sql
        assert "VALUES (%s, %s)" in sql

    def test_get_dialect(self):
        assert get_dialect("SQLite") == SQLiteDialect()
        assert get_dialect("postgres").name == "postgresql"

    def test_unknown_dialect(self):
        with pytest.raises(ConfigError):
            get_dialect("oracle")


class TestTimestamps:
    """Test fixed-width UTC serialization."""

    def test_fixed_width_utc(self):
        eastern = timezone(timedelta(hours=-5))
        stamp = to_iso8601(datetime(2026, 1, 5, 1, 3, tzinfo=eastern))
        assert stamp == "2026-01-05T06:03:00.000000+00:00"

    def test_naive_taken_as_utc(self):
        assert to_iso8601(datetime(2026, 1, 5, 6, 3)) == "2026-01-05T06:03:00.000000+00:00"

    def test_string_order_matches_time_order(self):
        earlier = to_iso8601(datetime(2026, 1, 5, 6, 3, 9, tzinfo=UTC))
        later = to_iso8601(datetime(2026, 1, 5, 6, 3, 10, 5, tzinfo=UTC))
        assert earlier < later

    def test_parse_z_suffix(self):
        assert from_iso8601("2026-01-05T06:03:00Z") == datetime(2026, 1, 5, 6, 3, tzinfo=UTC)
        assert from_iso8601(None) is None

    def test_ulid_shape(self):
        first = generate_ulid()
        assert len(first) == 26
        assert set(first) <= set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")
