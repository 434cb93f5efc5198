"""Tests for scheduler health scoring."""

from datetime import timedelta

import pytest

from digest_spine.execution.circuit_breaker import CircuitBreaker, CircuitState
from digest_spine.scheduling.health import (
    SchedulerHealthReport,
    check_scheduler_health,
    status_for_score,
)
from digest_spine.scheduling.tick import TickScheduler


class MonotonicStub:
    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def record_executions(service, succeeded: int, failed: int) -> None:
    stats = service.get_stats()
    stats.executions_succeeded = succeeded
    stats.executions_failed = failed


class TestStatusForScore:
    """Test score thresholds."""

    @pytest.mark.parametrize(
        "score, status",
        [
            (100, "healthy"),
            (90, "healthy"),
            (89, "warning"),
            (70, "warning"),
            (69, "degraded"),
            (50, "degraded"),
            (49, "critical"),
            (0, "critical"),
        ],
    )
    def test_thresholds(self, score, status):
        assert status_for_score(score) == status


class TestSchedulerHealth:
    """Test check_scheduler_health deductions."""

    def test_fresh_service_healthy(self, service):
        report = check_scheduler_health(service)

        assert isinstance(report, SchedulerHealthReport)
        assert report.score == 100
        assert report.healthy is True
        assert report.issues == []
        assert report.lease is None
        assert report.ticker is None

    def test_service_health_shortcut(self, service):
        assert service.health().status == "healthy"

    def test_open_circuit(self, service):
        service.breaker.force_open()

        report = check_scheduler_health(service)

        assert report.score == 60
        assert report.status == "degraded"
        assert any("OPEN" in issue for issue in report.issues)

    @pytest.mark.asyncio
    async def test_half_open_circuit(self, make_service):
        mono = MonotonicStub()
        breaker = CircuitBreaker(reset_timeout=10, success_threshold=2, clock=mono)
        service = make_service(breaker=breaker)
        breaker.force_open()
        mono.value = 11

        async def ok():
            return "ok"

        await breaker.execute(ok)
        assert breaker.state == CircuitState.HALF_OPEN

        report = check_scheduler_health(service)

        assert report.score == 80
        assert report.status == "warning"

    @pytest.mark.parametrize(
        "succeeded, failed, expected",
        [(9, 1, 100), (8, 2, 85), (7, 3, 70)],
    )
    def test_success_rate(self, service, succeeded, failed, expected):
        record_executions(service, succeeded, failed)
        assert check_scheduler_health(service).score == expected

    @pytest.mark.asyncio
    async def test_queue_backlog(self, service):
        service.queue.pause()

        async def job():
            return None

        for _ in range(11):
            service.queue.enqueue(job)

        report = check_scheduler_health(service)
        service.queue.resume()
        await service.queue.join()

        assert report.score == 85
        assert report.queue["queue_length"] == 11

    @pytest.mark.asyncio
    async def test_stale_ticker(self, service, clock):
        ticker = TickScheduler(service.tick, interval_seconds=600, clock=clock)
        service.ticker = ticker
        ticker.start()
        ticker.state.last_tick_at = clock.now - timedelta(seconds=1300)

        report = check_scheduler_health(service)
        await ticker.stop()

        assert report.score == 80
        assert report.ticker["healthy"] is True

    @pytest.mark.asyncio
    async def test_recent_tick_not_stale(self, service, clock):
        ticker = TickScheduler(service.tick, interval_seconds=600, clock=clock)
        service.ticker = ticker
        ticker.start()
        ticker.state.last_tick_at = clock.now - timedelta(seconds=600)

        report = check_scheduler_health(service)
        await ticker.stop()

        assert report.score == 100

    def test_combined_critical(self, service):
        service.breaker.force_open()
        record_executions(service, 1, 9)

        report = check_scheduler_health(service)

        assert report.score == 30
        assert report.status == "critical"
        assert len(report.issues) == 2

    def test_lease_reported_when_held(self, service):
        service.lease.acquire()

        report = check_scheduler_health(service)

        assert report.lease["holder"] == "web-1"

    def test_to_dict(self, service, clock):
        data = check_scheduler_health(service, now=clock.now).to_dict()

        assert data["status"] == "healthy"
        assert data["timestamp"] == "2026-01-05T06:03:00.000000+00:00"
        assert set(data["metrics"]) == {"lease", "circuit_breaker", "queue", "ticker", "stats"}
        assert data["metrics"]["circuit_breaker"]["state"] == "closed"
