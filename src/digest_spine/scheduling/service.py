"""Digest scheduler service: one check pass per tick.

Manifesto:
    The service ties the pieces together but owns no policy of its own.
    Whether a schedule is due is the matcher's call; whether it already
    ran is the guard's; whether this process gets to run it is the
    claim's; whether the downstream is healthy enough to try is the
    breaker's. The service sequences them and counts what happened.

    Check pass::

        acquire lease ──CONTENDED──► skip (passes_skipped += 1)
              │ACQUIRED
              ├─ start heartbeat task
              ├─ load users with schedules
              ├─ prune empty-day schedules (batched, gathered)
              ├─ for each enabled schedule:
              │     is_due? ─no─► next
              │     already_ran_today (batch copy)? ─yes─► next
              │     claim (reload, re-check, save lastRun) ─not claimed─► next
              │     enqueue breaker(executor.execute(user, schedule))
              ├─ await queued runs, record SUCCEEDED / FAILED
              └─ stop heartbeat, release lease

Tags:
    digest-spine, scheduling, service, orchestration
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from digest_spine.core.errors import CircuitOpenError, DigestError, ScheduleError
from digest_spine.core.logging import LogContext, get_logger
from digest_spine.core.models import SCHEDULES_KEY, Schedule, UserRecord
from digest_spine.core.patch import Patch
from digest_spine.core.protocols import Executor
from digest_spine.core.retry import RetryStrategy
from digest_spine.core.retryable_save import save_with_retry
from digest_spine.core.timestamps import to_iso8601, utc_now
from digest_spine.core.users import UserRepository
from digest_spine.execution.circuit_breaker import CircuitBreaker
from digest_spine.execution.queue import ConcurrencyQueue

from .claim import ClaimOutcome, RunState, ScheduleClaimer
from .idempotency import already_ran_today
from .lease import LeaseAcquisition, SchedulerLease
from .recurrence import DEFAULT_TOLERANCE_MINUTES, is_due

if TYPE_CHECKING:
    from .health import SchedulerHealthReport
    from .tick import TickScheduler

logger = get_logger(__name__)

DEFAULT_CLEANUP_BATCH_SIZE = 10


@dataclass
class SchedulerStats:
    """Cumulative counters since start (or the last reset)."""

    passes_run: int = 0
    passes_skipped: int = 0
    pass_errors: int = 0
    schedules_checked: int = 0
    schedules_due: int = 0
    claims_won: int = 0
    claims_already_taken: int = 0
    claims_gone: int = 0
    claims_conflicted: int = 0
    executions_succeeded: int = 0
    executions_failed: int = 0
    executions_rejected: int = 0
    schedules_pruned: int = 0
    schedule_errors: int = 0
    last_pass_at: datetime | None = None
    last_pass_duration_ms: float | None = None

    @property
    def executions_total(self) -> int:
        return self.executions_succeeded + self.executions_failed + self.executions_rejected

    @property
    def success_rate(self) -> float | None:
        if self.executions_total == 0:
            return None
        return self.executions_succeeded / self.executions_total * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "passes_run": self.passes_run,
            "passes_skipped": self.passes_skipped,
            "pass_errors": self.pass_errors,
            "schedules_checked": self.schedules_checked,
            "schedules_due": self.schedules_due,
            "claims_won": self.claims_won,
            "claims_already_taken": self.claims_already_taken,
            "claims_gone": self.claims_gone,
            "claims_conflicted": self.claims_conflicted,
            "executions_succeeded": self.executions_succeeded,
            "executions_failed": self.executions_failed,
            "executions_rejected": self.executions_rejected,
            "schedules_pruned": self.schedules_pruned,
            "schedule_errors": self.schedule_errors,
            "success_rate": self.success_rate,
            "last_pass_at": to_iso8601(self.last_pass_at),
            "last_pass_duration_ms": self.last_pass_duration_ms,
        }


@dataclass
class RunRecord:
    """What happened to one due schedule during a pass."""

    user_id: str
    schedule_id: str
    state: RunState
    claim: ClaimOutcome | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "schedule_id": self.schedule_id,
            "state": self.state.value,
            "claim": self.claim.value if self.claim else None,
            "error": self.error,
        }


@dataclass
class PassReport:
    """Result of one ``run_pass``."""

    started_at: datetime
    lease: LeaseAcquisition
    users_loaded: int = 0
    schedules_checked: int = 0
    schedules_pruned: int = 0
    runs: list[RunRecord] = field(default_factory=list)

    @property
    def executed(self) -> list[RunRecord]:
        return [r for r in self.runs if r.state in (RunState.SUCCEEDED, RunState.FAILED)]

    @property
    def succeeded(self) -> list[RunRecord]:
        return [r for r in self.runs if r.state == RunState.SUCCEEDED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": to_iso8601(self.started_at),
            "lease": self.lease.value,
            "users_loaded": self.users_loaded,
            "schedules_checked": self.schedules_checked,
            "schedules_pruned": self.schedules_pruned,
            "runs": [r.to_dict() for r in self.runs],
        }


class DigestSchedulerService:
    """Runs guarded check passes over every user's scheduled digests.

    Example:
        >>> service = DigestSchedulerService(users, lease, executor)
        >>> report = await service.run_pass()
        >>> [r.schedule_id for r in report.succeeded]
        ['morning']
    """

    def __init__(
        self,
        users: UserRepository,
        lease: SchedulerLease,
        executor: Executor,
        *,
        claimer: ScheduleClaimer | None = None,
        breaker: CircuitBreaker | None = None,
        queue: ConcurrencyQueue | None = None,
        tolerance_minutes: int = DEFAULT_TOLERANCE_MINUTES,
        cleanup_batch_size: int = DEFAULT_CLEANUP_BATCH_SIZE,
        save_strategy: RetryStrategy | None = None,
        heartbeat_interval_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.users = users
        self.lease = lease
        self.executor = executor
        self.save_strategy = save_strategy
        if claimer is None:
            claimer = ScheduleClaimer(users, strategy=save_strategy, clock=clock)
        self.claimer = claimer
        self.breaker = breaker if breaker is not None else CircuitBreaker()
        self.queue = queue if queue is not None else ConcurrencyQueue()
        self.tolerance_minutes = tolerance_minutes
        self.cleanup_batch_size = cleanup_batch_size
        self.heartbeat_interval_seconds = heartbeat_interval_seconds or lease.ttl_seconds / 3
        self.clock = clock
        self.ticker: TickScheduler | None = None
        self._stats = SchedulerStats()

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def tick(self) -> None:
        """TickCallback entry point."""
        await self.run_pass()

    async def run_pass(self) -> PassReport:
        """Run one check pass if this process can take the lease."""
        now = self.clock()
        started = time.monotonic()

        acquisition = self.lease.acquire()
        report = PassReport(started_at=now, lease=acquisition)
        if acquisition is LeaseAcquisition.CONTENDED:
            self._stats.passes_skipped += 1
            logger.info("pass_skipped_lease_contended", lock_id=self.lease.lock_id)
            return report

        self._stats.passes_run += 1
        self._stats.last_pass_at = now
        heartbeat = asyncio.get_running_loop().create_task(self._keep_lease_alive())
        try:
            async with LogContext(holder=self.lease.holder, pass_at=to_iso8601(now)):
                await self._check_all(now, report)
        except Exception:
            self._stats.pass_errors += 1
            raise
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            self.lease.release()
            self._stats.last_pass_duration_ms = (time.monotonic() - started) * 1000

        logger.info(
            "pass_completed",
            users=report.users_loaded,
            checked=report.schedules_checked,
            due=len(report.runs),
            executed=len(report.executed),
            succeeded=len(report.succeeded),
            pruned=report.schedules_pruned,
            duration_ms=round(self._stats.last_pass_duration_ms, 1),
        )
        return report

    async def _check_all(self, now: datetime, report: PassReport) -> None:
        users = self.users.list_with_schedules()
        report.users_loaded = len(users)
        report.schedules_pruned = await self.prune_empty_schedules(users)

        pending: list[tuple[RunRecord, asyncio.Future[Any]]] = []
        for user in users:
            for entry in user.schedule_entries():
                report.schedules_checked += 1
                self._stats.schedules_checked += 1
                try:
                    schedule = Schedule.from_dict(entry)
                    submitted = await self._process_schedule(user, schedule, now, report)
                except DigestError as e:
                    self._stats.schedule_errors += 1
                    logger.error(
                        "schedule_check_failed",
                        user_id=user.id,
                        schedule_id=entry.get("id"),
                        **e.to_dict(),
                    )
                    continue
                if submitted is not None:
                    pending.append(submitted)

        await self._collect(pending)

    async def _process_schedule(
        self,
        user: UserRecord,
        schedule: Schedule,
        now: datetime,
        report: PassReport,
    ) -> tuple[RunRecord, asyncio.Future[Any]] | None:
        if not schedule.is_enabled:
            return None
        try:
            due = is_due(schedule.time, schedule.days, user.timezone, now, self.tolerance_minutes)
        except ScheduleError as e:
            raise e.with_context(user_id=user.id, schedule_id=schedule.id)
        if not due:
            return None
        if already_ran_today(schedule.last_run, user.timezone, now):
            logger.debug("schedule_already_ran_today", user_id=user.id, schedule_id=schedule.id)
            return None

        self._stats.schedules_due += 1
        record = RunRecord(user.id, schedule.id, RunState.DUE)
        report.runs.append(record)

        claim = await self.claimer.claim(user.id, schedule.id, now)
        record.claim = claim.outcome
        if not claim.claimed:
            self._count_refusal(claim.outcome)
            return None

        self._stats.claims_won += 1
        record.state = RunState.CLAIMED
        return record, self._submit(claim.user, claim.schedule)

    def _count_refusal(self, outcome: ClaimOutcome) -> None:
        if outcome == ClaimOutcome.ALREADY_CLAIMED:
            self._stats.claims_already_taken += 1
        elif outcome == ClaimOutcome.GONE:
            self._stats.claims_gone += 1
        elif outcome == ClaimOutcome.CONFLICT:
            self._stats.claims_conflicted += 1

    def _submit(self, user: UserRecord, schedule: Schedule) -> asyncio.Future[Any]:
        async def run() -> Any:
            return await self.breaker.execute(lambda: self.executor.execute(user, schedule))

        return self.queue.enqueue(
            run,
            job_id=f"{user.id}-{schedule.id}",
            user_id=user.id,
            should_retry=lambda e: not isinstance(e, CircuitOpenError),
        )

    async def _collect(self, pending: list[tuple[RunRecord, asyncio.Future[Any]]]) -> None:
        if not pending:
            return
        for record, _ in pending:
            record.state = RunState.EXECUTING
        results = await asyncio.gather(*(f for _, f in pending), return_exceptions=True)
        for (record, _), result in zip(pending, results, strict=True):
            if isinstance(result, BaseException):
                record.state = RunState.FAILED
                record.error = str(result)
                if isinstance(result, CircuitOpenError):
                    self._stats.executions_rejected += 1
                else:
                    self._stats.executions_failed += 1
                logger.error(
                    "digest_execution_failed",
                    user_id=record.user_id,
                    schedule_id=record.schedule_id,
                    error=record.error,
                    error_type=type(result).__name__,
                )
            else:
                record.state = RunState.SUCCEEDED
                self._stats.executions_succeeded += 1
                logger.info(
                    "digest_execution_succeeded",
                    user_id=record.user_id,
                    schedule_id=record.schedule_id,
                )

    async def _keep_lease_alive(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval_seconds)
            if not self.lease.heartbeat():
                logger.warning("lease_lost_during_pass", lock_id=self.lease.lock_id)
                return

    # ------------------------------------------------------------------
    # Empty-day cleanup
    # ------------------------------------------------------------------

    async def prune_empty_schedules(self, users: list[UserRecord]) -> int:
        """Remove schedules with no weekdays; writes are gathered in batches.

        Returns:
            Number of schedules removed
        """
        targets: list[tuple[UserRecord, list[str]]] = []
        for user in users:
            empty = [
                str(entry["id"])
                for entry in user.schedule_entries()
                if "id" in entry and not entry.get("days")
            ]
            if empty:
                targets.append((user, empty))
        if not targets:
            return 0

        removed = 0
        for start in range(0, len(targets), self.cleanup_batch_size):
            batch = targets[start : start + self.cleanup_batch_size]
            results = await asyncio.gather(
                *(self._prune_user(user, ids) for user, ids in batch),
                return_exceptions=True,
            )
            for (user, ids), result in zip(batch, results, strict=True):
                if isinstance(result, BaseException):
                    self._stats.schedule_errors += 1
                    logger.error(
                        "empty_schedule_cleanup_failed",
                        user_id=user.id,
                        schedule_ids=ids,
                        error=str(result),
                    )
                else:
                    removed += result
        self._stats.schedules_pruned += removed
        return removed

    async def _prune_user(self, user: UserRecord, schedule_ids: list[str]) -> int:
        patch = Patch()
        for schedule_id in schedule_ids:
            patch = patch.remove((SCHEDULES_KEY, schedule_id))

        def still_empty(record: UserRecord) -> bool:
            for schedule_id in schedule_ids:
                schedule = record.get_schedule(schedule_id)
                if schedule is not None and schedule.has_days:
                    return False
            return True

        result = await save_with_retry(
            self.users,
            user.id,
            patch,
            precondition=still_empty,
            initial=user,
            strategy=self.save_strategy,
        )
        if not result.saved:
            return 0
        logger.info("empty_schedules_removed", user_id=user.id, schedule_ids=schedule_ids)
        return len(schedule_ids)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()

    def health(self) -> SchedulerHealthReport:
        from .health import check_scheduler_health

        return check_scheduler_health(self)


__all__ = [
    "DigestSchedulerService",
    "PassReport",
    "RunRecord",
    "SchedulerStats",
]
