"""Claim-before-execute for one (user, schedule, local day).

Per occurrence the states are::

    NOT_DUE ──► DUE ──► CLAIMED ──► EXECUTING ──► SUCCEEDED
                  │                          └──► FAILED
                  └──► (ALREADY_CLAIMED | GONE | CONFLICT)

``ScheduleClaimer.claim`` moves DUE to CLAIMED: it reloads the owning
record, re-runs the same-day guard on the fresh copy and persists
``lastRun = now`` through ``save_with_retry``. The guard is the save's
precondition, so when two processes race the loser either lost the version
race and then sees the winner's ``lastRun`` on reload, or sees it straight
away. Either way it gets ALREADY_CLAIMED and never reaches the executor.

Once claimed, the run is spent for the day: an executor failure does not
roll the claim back.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from digest_spine.core.errors import RecordNotFoundError, VersionConflictError
from digest_spine.core.logging import get_logger
from digest_spine.core.models import SCHEDULES_KEY, Schedule, UserRecord
from digest_spine.core.patch import Patch
from digest_spine.core.retry import RetryStrategy
from digest_spine.core.retryable_save import save_with_retry
from digest_spine.core.timestamps import to_iso8601, utc_now
from digest_spine.core.users import UserRepository

from .idempotency import already_ran_today

logger = get_logger(__name__)


class RunState(str, Enum):
    """Lifecycle of one scheduled occurrence."""

    NOT_DUE = "not_due"
    DUE = "due"
    CLAIMED = "claimed"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"
    GONE = "gone"  # user or schedule deleted/disabled since the batch read
    CONFLICT = "conflict"  # reconciliation retries exhausted


@dataclass(frozen=True)
class ClaimResult:
    outcome: ClaimOutcome
    user: UserRecord | None = None
    schedule: Schedule | None = None
    claimed_at: datetime | None = None

    @property
    def claimed(self) -> bool:
        return self.outcome == ClaimOutcome.CLAIMED


def last_run_patch(schedule_id: str, at: datetime) -> Patch:
    return Patch().set((SCHEDULES_KEY, schedule_id, "lastRun"), to_iso8601(at))


class ScheduleClaimer:
    """Records a run on the owning document before the executor is called."""

    def __init__(
        self,
        users: UserRepository,
        strategy: RetryStrategy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.users = users
        self.strategy = strategy
        self.clock = clock

    async def claim(
        self,
        user_id: str,
        schedule_id: str,
        now: datetime | None = None,
    ) -> ClaimResult:
        now = now or self.clock()
        refusal: list[ClaimOutcome] = []

        def still_claimable(record: UserRecord) -> bool:
            schedule = record.get_schedule(schedule_id)
            if schedule is None or not schedule.is_enabled or not schedule.has_days:
                refusal.append(ClaimOutcome.GONE)
                return False
            if already_ran_today(schedule.last_run, record.timezone, now):
                refusal.append(ClaimOutcome.ALREADY_CLAIMED)
                return False
            return True

        try:
            result = await save_with_retry(
                self.users,
                user_id,
                last_run_patch(schedule_id, now),
                precondition=still_claimable,
                strategy=self.strategy,
            )
        except RecordNotFoundError:
            logger.info("claim_user_gone", user_id=user_id, schedule_id=schedule_id)
            return ClaimResult(ClaimOutcome.GONE)
        except VersionConflictError as e:
            logger.warning(
                "claim_conflict_exhausted",
                user_id=user_id,
                schedule_id=schedule_id,
                error=e.message,
            )
            return ClaimResult(ClaimOutcome.CONFLICT)

        record = result.record
        schedule = record.get_schedule(schedule_id)
        if result.saved:
            logger.info("schedule_claimed", user_id=user_id, schedule_id=schedule_id)
            return ClaimResult(ClaimOutcome.CLAIMED, record, schedule, now)

        outcome = refusal[-1] if refusal else ClaimOutcome.ALREADY_CLAIMED
        logger.info(
            "claim_refused",
            user_id=user_id,
            schedule_id=schedule_id,
            outcome=outcome.value,
        )
        return ClaimResult(outcome, record, schedule)


__all__ = [
    "ClaimOutcome",
    "ClaimResult",
    "RunState",
    "ScheduleClaimer",
    "last_run_patch",
]
