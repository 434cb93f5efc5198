"""Fixtures for scheduler service tests."""

import pytest

from digest_spine.execution.queue import ConcurrencyQueue
from digest_spine.scheduling.lease import SchedulerLease
from digest_spine.scheduling.service import DigestSchedulerService


@pytest.fixture
def make_service(users, executor, clock, no_backoff, db_conn):
    """Build a service for one process identity sharing the test database."""

    def _make(holder: str = "web-1", queue_retries: int = 0, **kwargs) -> DigestSchedulerService:
        lease = SchedulerLease(db_conn, holder=holder, clock=clock)
        kwargs.setdefault("queue", ConcurrencyQueue(max_retries=queue_retries))
        return DigestSchedulerService(
            users,
            lease,
            executor,
            save_strategy=no_backoff,
            clock=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()
