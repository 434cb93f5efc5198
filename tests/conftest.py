"""
Shared pytest fixtures for digest-spine tests.

This module provides:
- An in-memory SQLite connection with the scheduler schema applied
- A settable clock so due-windows and lease expiry are deterministic
- Helpers to seed users with scheduled digests
- A recording executor standing in for the digest pipeline

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_something(users, make_user, schedule_doc):
        make_user("u1", [schedule_doc("s1", time="06:00")])
"""

import asyncio
import sqlite3
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

# Ensure digest_spine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from digest_spine.core.models import UserRecord
from digest_spine.core.retry import ConstantBackoff
from digest_spine.core.schema import create_schema
from digest_spine.core.settings import clear_settings_cache
from digest_spine.core.users import UserRepository

# 2026-01-05 is a Monday.
MONDAY_0603_UTC = datetime(2026, 1, 5, 6, 3, tzinfo=UTC)


class FakeClock:
    """Callable clock whose current instant is set by the test."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


class RecordingExecutor:
    """Executor that records every call and can be told to fail."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.delay: float = 0.0

    async def execute(self, user: UserRecord, schedule) -> dict[str, Any]:
        self.calls.append((user.id, schedule.id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return {"user_id": user.id, "schedule_id": schedule.id, "topics": schedule.topics}


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_conn():
    """In-memory SQLite database with the users and lease tables."""
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def clock():
    """Clock pinned to Monday 2026-01-05 06:03 UTC."""
    return FakeClock(MONDAY_0603_UTC)


@pytest.fixture
def users(db_conn, clock):
    return UserRepository(db_conn, clock=clock)


@pytest.fixture
def no_backoff():
    """Three reconciliation retries without sleeping."""
    return ConstantBackoff(max_retries=3, delay=0.0)


# =============================================================================
# Seed data
# =============================================================================


@pytest.fixture
def schedule_doc():
    """Build one ``scheduledSummaries`` element."""

    def _build(
        schedule_id: str = "s1",
        time: str = "06:00",
        days: tuple[str, ...] | list[str] = ("Monday",),
        *,
        enabled: bool = True,
        last_run: str | None = None,
        topics: tuple[str, ...] = ("tech",),
    ) -> dict[str, Any]:
        return {
            "id": schedule_id,
            "name": f"Digest {schedule_id}",
            "time": time,
            "days": list(days),
            "topics": list(topics),
            "isEnabled": enabled,
            "lastRun": last_run,
        }

    return _build


@pytest.fixture
def make_user(users):
    """Insert a user whose document carries the given schedules."""

    def _make(
        user_id: str = "u1",
        schedules: list[dict[str, Any]] | None = None,
        timezone: str | None = "UTC",
        **extra: Any,
    ) -> UserRecord:
        doc: dict[str, Any] = {"preferences": {"timezone": timezone}, **extra}
        if schedules is not None:
            doc["scheduledSummaries"] = schedules
        return users.insert(UserRecord(id=user_id, email=f"{user_id}@example.com", doc=doc))

    return _make


@pytest.fixture
def executor():
    return RecordingExecutor()


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _clear_settings():
    """Settings are cached per process; never leak between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()
