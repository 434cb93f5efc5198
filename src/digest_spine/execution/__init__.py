"""Executor protection: circuit breaker and bounded-concurrency queue.

Architecture::

    DigestSchedulerService
        │ enqueue(job)
        ▼
    ConcurrencyQueue  (FIFO, ≤ concurrency running, failed jobs retried at the front)
        │ job.execute()
        ▼
    CircuitBreaker    (CLOSED / OPEN / HALF_OPEN, per-call timeout)
        │
        ▼
    Executor.execute(user, schedule)
"""

from digest_spine.execution.circuit_breaker import (
    BreakerStatus,
    CircuitBreaker,
    CircuitState,
    CircuitStats,
)
from digest_spine.execution.queue import ConcurrencyQueue, Job, QueueStats

__all__ = [
    "BreakerStatus",
    "CircuitBreaker",
    "CircuitState",
    "CircuitStats",
    "ConcurrencyQueue",
    "Job",
    "QueueStats",
]
