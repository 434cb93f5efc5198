"""Scheduler package for digest-spine.

Manifesto:
    Firing a user's digest "at 06:00 on Mondays, their time" from a fleet
    of servers that each poll every ten minutes needs more than a timer.
    It needs a lease (so one process runs the pass), a tolerance window
    (so a coarse tick still lands), a same-day guard (so a second tick or a
    second process does not fire again), and a claim that is persisted
    before any side effect happens.

┌──────────────────────────────────────────────────────────────────────────────┐
│  DIGEST SCHEDULER                                                            │
│                                                                              │
│  Quick Start:                                                                │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from digest_spine.scheduling import start_digest_scheduler         │   │
│  │                                                                      │   │
│  │   async def main():                                                  │   │
│  │       service = start_digest_scheduler(conn, executor)               │   │
│  │       ...                                                            │   │
│  │       await stop_digest_scheduler(service)                           │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                              │
│  Components:                                                                 │
│    lease.py        SchedulerLease      TTL lease, atomic conditional upsert  │
│    tick.py         TickScheduler       boundary-aligned asyncio loop         │
│    recurrence.py   is_due              weekday + local minute window         │
│    idempotency.py  already_ran_today   same local date and < 23h             │
│    claim.py        ScheduleClaimer     lastRun persisted before execution    │
│    service.py      DigestSchedulerService  one check pass per tick           │
│    health.py       check_scheduler_health  score + issues                    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from digest_spine.core.dialect import Dialect, SQLiteDialect
from digest_spine.core.logging import configure_from_settings, get_logger
from digest_spine.core.protocols import Connection, Executor
from digest_spine.core.retryable_save import default_strategy
from digest_spine.core.settings import DigestSettings, get_settings
from digest_spine.core.timestamps import utc_now
from digest_spine.core.users import UserRepository
from digest_spine.execution.circuit_breaker import CircuitBreaker
from digest_spine.execution.queue import ConcurrencyQueue

from .claim import ClaimOutcome, ClaimResult, RunState, ScheduleClaimer
from .health import SchedulerHealthReport, check_scheduler_health
from .idempotency import already_ran_today
from .lease import LeaseAcquisition, LeaseInfo, SchedulerLease
from .recurrence import is_due
from .service import DigestSchedulerService, PassReport, RunRecord, SchedulerStats
from .tick import TickScheduler, TickState, next_boundary

logger = get_logger(__name__)


def create_digest_scheduler(
    conn: Connection,
    executor: Executor,
    settings: DigestSettings | None = None,
    dialect: Dialect | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> DigestSchedulerService:
    """Wire every component from settings.

    The returned service has a ``ticker`` attached but not started.

    Example:
        >>> service = create_digest_scheduler(conn, executor)
        >>> report = await service.run_pass()
    """
    settings = settings or get_settings()
    dialect = dialect or SQLiteDialect()

    users = UserRepository(conn, dialect, clock=clock)
    lease = SchedulerLease(
        conn,
        dialect=dialect,
        lock_id=settings.lease_id,
        holder=settings.instance_id,
        ttl_seconds=settings.lease_ttl_seconds,
        clock=clock,
    )
    breaker = CircuitBreaker(
        name="digest-executor",
        failure_threshold=settings.breaker_failure_threshold,
        success_threshold=settings.breaker_success_threshold,
        call_timeout=settings.breaker_call_timeout_seconds,
        reset_timeout=settings.breaker_reset_timeout_seconds,
        wall_clock=clock,
    )
    queue = ConcurrencyQueue(
        concurrency=settings.queue_concurrency,
        max_retries=settings.queue_max_retries,
    )

    service = DigestSchedulerService(
        users,
        lease,
        executor,
        breaker=breaker,
        queue=queue,
        tolerance_minutes=settings.tolerance_minutes,
        cleanup_batch_size=settings.cleanup_batch_size,
        save_strategy=default_strategy(settings.save_max_attempts),
        clock=clock,
    )
    service.ticker = TickScheduler(
        service.tick,
        interval_seconds=settings.tick_interval_seconds,
        min_delay_seconds=settings.min_tick_delay_seconds,
        clock=clock,
    )
    return service


def start_digest_scheduler(
    conn: Connection,
    executor: Executor,
    settings: DigestSettings | None = None,
    dialect: Dialect | None = None,
    configure: bool = True,
) -> DigestSchedulerService | None:
    """Create and start the scheduler unless disabled for this process.

    Must be called from within a running event loop. The enable toggle is
    read once here; there is no runtime re-enable.

    Returns:
        The running service, or None when ``scheduler_enabled`` is false.
    """
    settings = settings or get_settings()
    if configure:
        configure_from_settings(settings)
    if not settings.scheduler_enabled:
        logger.info("digest_scheduler_disabled", instance_id=settings.instance_id)
        return None

    service = create_digest_scheduler(conn, executor, settings, dialect)
    service.ticker.start()
    logger.info(
        "digest_scheduler_started",
        instance_id=settings.instance_id,
        interval_seconds=settings.tick_interval_seconds,
        tolerance_minutes=settings.tolerance_minutes,
    )
    return service


async def stop_digest_scheduler(service: DigestSchedulerService) -> None:
    """Stop ticking and wait for the current pass to finish.

    Executor calls already in flight are awaited, not cancelled.
    """
    if service.ticker is not None:
        await service.ticker.stop()


__all__ = [
    # Factory
    "create_digest_scheduler",
    "start_digest_scheduler",
    "stop_digest_scheduler",
    # Lease
    "SchedulerLease",
    "LeaseAcquisition",
    "LeaseInfo",
    # Matching
    "is_due",
    "already_ran_today",
    # Claim
    "ScheduleClaimer",
    "ClaimOutcome",
    "ClaimResult",
    "RunState",
    # Service
    "DigestSchedulerService",
    "PassReport",
    "RunRecord",
    "SchedulerStats",
    # Timer
    "TickScheduler",
    "TickState",
    "next_boundary",
    # Health
    "SchedulerHealthReport",
    "check_scheduler_health",
]
