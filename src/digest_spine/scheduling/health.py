"""Scheduler health scoring.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER HEALTH SCORE                                                      │
│                                                                              │
│  Start at 100 and deduct:                                                    │
│    circuit OPEN                              -40                             │
│    circuit HALF_OPEN                         -20                             │
│    execution success rate < 80%              -30                             │
│    execution success rate < 90%              -15                             │
│    queue backlog > 10                        -15                             │
│    last tick older than 2 intervals          -20                             │
│                                                                              │
│  Status: >= 90 healthy, >= 70 warning, >= 50 degraded, otherwise critical   │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from digest_spine.core.timestamps import to_iso8601
from digest_spine.execution.circuit_breaker import CircuitState

if TYPE_CHECKING:
    from .service import DigestSchedulerService

QUEUE_BACKLOG_THRESHOLD = 10


@dataclass
class SchedulerHealthReport:
    """Complete scheduler health report."""

    status: str
    score: int
    issues: list[str] = field(default_factory=list)
    timestamp: datetime | None = None
    lease: dict[str, Any] | None = None
    circuit_breaker: dict[str, Any] = field(default_factory=dict)
    queue: dict[str, Any] = field(default_factory=dict)
    ticker: dict[str, Any] | None = None
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "score": self.score,
            "issues": self.issues,
            "timestamp": to_iso8601(self.timestamp),
            "metrics": {
                "lease": self.lease,
                "circuit_breaker": self.circuit_breaker,
                "queue": self.queue,
                "ticker": self.ticker,
                "stats": self.stats,
            },
        }


def status_for_score(score: int) -> str:
    if score < 50:
        return "critical"
    if score < 70:
        return "degraded"
    if score < 90:
        return "warning"
    return "healthy"


def check_scheduler_health(
    service: DigestSchedulerService,
    now: datetime | None = None,
) -> SchedulerHealthReport:
    """Score the service from its breaker, queue, stats, lease and ticker."""
    now = now or service.clock()
    score = 100
    issues: list[str] = []

    stats = service.get_stats()
    success_rate = stats.success_rate
    if success_rate is not None:
        if success_rate < 80:
            score -= 30
            issues.append(f"Low success rate: {success_rate:.1f}%")
        elif success_rate < 90:
            score -= 15
            issues.append(f"Moderate success rate: {success_rate:.1f}%")

    breaker = service.breaker.status()
    if breaker.state == CircuitState.OPEN:
        score -= 40
        issues.append("Circuit breaker is OPEN - executions are being rejected")
    elif breaker.state == CircuitState.HALF_OPEN:
        score -= 20
        issues.append("Circuit breaker is HALF_OPEN - recovering from failures")

    queue_status = service.queue.status()
    if queue_status["queue_length"] > QUEUE_BACKLOG_THRESHOLD:
        score -= 15
        issues.append(f"Queue backlog: {queue_status['queue_length']} jobs waiting")

    ticker_health = None
    if service.ticker is not None:
        ticker_health = service.ticker.health()
        last_tick = service.ticker.state.last_tick_at
        interval = service.ticker.interval_seconds
        if service.ticker.is_running and last_tick is not None:
            age = (now - last_tick).total_seconds()
            if age > interval * 2:
                score -= 20
                issues.append(f"Last tick was {age:.0f}s ago (expected every {interval:.0f}s)")

    lease_info = service.lease.get_info()

    return SchedulerHealthReport(
        status=status_for_score(score),
        score=score,
        issues=issues,
        timestamp=now,
        lease=lease_info.to_dict() if lease_info else None,
        circuit_breaker=breaker.to_dict(),
        queue=queue_status,
        ticker=ticker_health,
        stats=stats.to_dict(),
    )


__all__ = [
    "QUEUE_BACKLOG_THRESHOLD",
    "SchedulerHealthReport",
    "check_scheduler_health",
    "status_for_score",
]
