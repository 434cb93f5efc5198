"""In-memory FIFO queue with bounded concurrency for executor runs.

Keeps a burst of due schedules (everyone's 07:00 digest) from hitting the
executor's downstream services all at once. It is a throttle, not a
correctness mechanism: exactly-once per day is enforced by the claim, not
here.

Architecture:
    ::

        enqueue(job) ──► pending (deque) ──► worker tasks (≤ concurrency)
              │                                   │
              └── returns Future ◄── result ──────┤
                                                  │ failure
                                     retries < max_retries?
                                        yes: push to FRONT of pending
                                        no:  reject the Future

Example:
    >>> queue = ConcurrencyQueue(concurrency=1, max_retries=2)
    >>> future = queue.enqueue(lambda: send_digest(user))
    >>> result = await future
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from digest_spine.core.errors import QueueClearedError
from digest_spine.core.timestamps import generate_ulid, to_iso8601, utc_now

logger = logging.getLogger(__name__)

JobCall = Callable[[], Awaitable[Any]]

DEFAULT_CONCURRENCY = 1
DEFAULT_MAX_RETRIES = 2


@dataclass
class Job:
    """One unit of queued work."""

    execute: JobCall
    id: str = field(default_factory=generate_ulid)
    user_id: str | None = None
    max_retries: int = DEFAULT_MAX_RETRIES
    retries: int = 0
    should_retry: Callable[[Exception], bool] | None = None
    added_at: float = 0.0
    future: asyncio.Future[Any] | None = field(default=None, repr=False)

    def retryable(self, error: Exception) -> bool:
        if self.retries >= self.max_retries:
            return False
        return self.should_retry is None or self.should_retry(error)


@dataclass
class QueueStats:
    total_processed: int = 0
    total_success: int = 0
    total_failed: int = 0
    total_retries: int = 0
    total_cleared: int = 0
    last_processed_at: datetime | None = None

    @property
    def success_rate(self) -> float | None:
        """Percentage of finished jobs that succeeded, None before any finished."""
        if self.total_processed == 0:
            return None
        return self.total_success / self.total_processed * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_success": self.total_success,
            "total_failed": self.total_failed,
            "total_retries": self.total_retries,
            "total_cleared": self.total_cleared,
            "last_processed_at": to_iso8601(self.last_processed_at),
            "success_rate": self.success_rate,
        }


class ConcurrencyQueue:
    """FIFO of async jobs, at most ``concurrency`` running at once."""

    def __init__(
        self,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.clock = clock
        self.stats = QueueStats()
        self._pending: deque[Job] = deque()
        self._active = 0
        self._paused = False
        self._tasks: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def active_jobs(self) -> int:
        return self._active

    @property
    def paused(self) -> bool:
        return self._paused

    def enqueue(
        self,
        job: Job | JobCall,
        *,
        user_id: str | None = None,
        job_id: str | None = None,
        max_retries: int | None = None,
        should_retry: Callable[[Exception], bool] | None = None,
    ) -> asyncio.Future[Any]:
        """Add a job; the returned future settles when it finally succeeds or fails.

        Must be called from within a running event loop.
        """
        if not isinstance(job, Job):
            job = Job(
                execute=job,
                id=job_id or generate_ulid(),
                user_id=user_id,
                max_retries=self.max_retries if max_retries is None else max_retries,
                should_retry=should_retry,
            )
        job.added_at = self.clock()
        job.future = asyncio.get_running_loop().create_future()
        self._pending.append(job)
        self._idle.clear()
        logger.debug(f"Queued job {job.id} (position {len(self._pending)})")
        self._pump()
        return job.future

    def _pump(self) -> None:
        while not self._paused and self._pending and self._active < self.concurrency:
            job = self._pending.popleft()
            self._active += 1
            task = asyncio.get_running_loop().create_task(self._process(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if not self._pending and self._active == 0:
            self._idle.set()

    async def _process(self, job: Job) -> None:
        started = self.clock()
        try:
            result = await job.execute()
        except Exception as e:
            elapsed = self.clock() - started
            if job.retryable(e):
                job.retries += 1
                self.stats.total_retries += 1
                logger.warning(
                    f"Job {job.id} failed after {elapsed:.2f}s: {e}; "
                    f"retry {job.retries}/{job.max_retries}"
                )
                self._pending.appendleft(job)
            else:
                self.stats.total_processed += 1
                self.stats.total_failed += 1
                self.stats.last_processed_at = utc_now()
                logger.error(f"Job {job.id} failed after {elapsed:.2f}s: {e}")
                if job.future is not None and not job.future.done():
                    job.future.set_exception(e)
        else:
            self.stats.total_processed += 1
            self.stats.total_success += 1
            self.stats.last_processed_at = utc_now()
            logger.debug(f"Job {job.id} completed in {self.clock() - started:.2f}s")
            if job.future is not None and not job.future.done():
                job.future.set_result(result)
        finally:
            self._active -= 1
            self._pump()

    def pause(self) -> None:
        """Stop starting new jobs; running jobs finish normally."""
        self._paused = True
        logger.info("Queue paused")

    def resume(self) -> None:
        self._paused = False
        logger.info("Queue resumed")
        self._pump()

    def clear(self) -> int:
        """Reject every pending job with ``QueueClearedError``.

        Returns:
            Number of jobs cleared
        """
        cleared = len(self._pending)
        while self._pending:
            job = self._pending.popleft()
            if job.future is not None and not job.future.done():
                job.future.set_exception(QueueClearedError(f"Job {job.id} cleared from queue"))
        self.stats.total_cleared += cleared
        if self._active == 0:
            self._idle.set()
        logger.info(f"Cleared {cleared} jobs from queue")
        return cleared

    async def join(self) -> None:
        """Wait until nothing is pending or running."""
        await self._idle.wait()

    def status(self) -> dict[str, Any]:
        next_job = None
        if self._pending:
            head = self._pending[0]
            next_job = {
                "id": head.id,
                "user_id": head.user_id,
                "retries": head.retries,
                "wait_seconds": self.clock() - head.added_at,
            }
        return {
            "queue_length": len(self._pending),
            "active_jobs": self._active,
            "concurrency": self.concurrency,
            "paused": self._paused,
            "stats": self.stats.to_dict(),
            "next_job": next_job,
        }


__all__ = [
    "ConcurrencyQueue",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_MAX_RETRIES",
    "Job",
    "JobCall",
    "QueueStats",
]
