"""Circuit breaker around the executor's external dependencies.

Fails fast while the downstream (article fetch, summarisation, delivery) is
unhealthy instead of burning a claimed run on a call that will time out.

States:
    CLOSED: calls pass through; ``failure_threshold`` consecutive failures open it
    OPEN: calls rejected until the reset deadline passes
    HALF_OPEN: one probe call at a time passes through, concurrent calls are
        rejected; ``success_threshold`` probe successes in a row close it,
        one failure reopens it for another ``reset_timeout``

Every call runs under ``call_timeout``; hitting it counts as a failure.

Example:
    >>> breaker = CircuitBreaker(name="executor", failure_threshold=5)
    >>> result = await breaker.execute(lambda: executor.execute(user, schedule))
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from digest_spine.core.errors import CircuitOpenError, ExecutorTimeoutError
from digest_spine.core.timestamps import Clock, to_iso8601, utc_now

logger = logging.getLogger(__name__)

AsyncCall = Callable[[], Awaitable[Any]]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    """Lifetime counters, never reset by state changes."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    timeouts: int = 0
    state_changes: int = 0

    @property
    def failure_rate(self) -> float:
        """Percentage of attempted calls that failed."""
        attempted = self.successful_calls + self.failed_calls
        return 100.0 * self.failed_calls / attempted if attempted else 0.0


@dataclass(frozen=True)
class BreakerStatus:
    """Point-in-time snapshot for health reporting."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_at: datetime | None
    last_state_change_at: datetime | None
    seconds_until_next_attempt: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_at": to_iso8601(self.last_failure_at),
            "last_state_change_at": to_iso8601(self.last_state_change_at),
            "seconds_until_next_attempt": self.seconds_until_next_attempt,
        }


class CircuitBreaker:
    """Consecutive-failure circuit breaker for async calls.

    ``clock`` is monotonic seconds and drives the reset deadline.
    ``wall_clock`` only timestamps the status report.
    """

    def __init__(
        self,
        name: str = "executor",
        failure_threshold: int = 5,
        success_threshold: int = 2,
        call_timeout: float = 60.0,
        reset_timeout: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Clock = utc_now,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.call_timeout = call_timeout
        self.reset_timeout = reset_timeout
        self.clock = clock
        self.wall_clock = wall_clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._reopen_at = 0.0
        self._probe_in_flight = False
        self._last_failure_at: datetime | None = None
        self._last_change_at: datetime | None = None
        self._stats = CircuitStats()

    @property
    def state(self) -> CircuitState:
        """Stored state; OPEN is left only when a call arrives after the deadline."""
        return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    @property
    def failure_count(self) -> int:
        return self._consecutive_failures

    def _remaining(self) -> float:
        return self._reopen_at - self.clock()

    def _enter(self, state: CircuitState) -> None:
        previous, self._state = self._state, state
        self._stats.state_changes += 1
        self._last_change_at = self.wall_clock()
        self._probe_successes = 0
        if state is CircuitState.OPEN:
            self._reopen_at = self.clock() + self.reset_timeout
        elif state is CircuitState.CLOSED:
            self._consecutive_failures = 0
        logger.info("Circuit '%s' %s -> %s", self.name, previous.value, state.value)

    def is_available(self) -> bool:
        """Whether a call made now would be attempted."""
        if self._state is CircuitState.HALF_OPEN:
            return not self._probe_in_flight
        return self._state is CircuitState.CLOSED or self._remaining() <= 0

    def record_success(self) -> None:
        self._stats.successful_calls += 1
        self._consecutive_failures = 0
        if self._state is not CircuitState.HALF_OPEN:
            return
        self._probe_successes += 1
        if self._probe_successes >= self.success_threshold:
            self._enter(CircuitState.CLOSED)

    def record_failure(self, error: BaseException | None = None) -> None:
        self._stats.failed_calls += 1
        self._consecutive_failures += 1
        self._last_failure_at = self.wall_clock()

        if self._state is CircuitState.HALF_OPEN:
            logger.warning("Circuit '%s' probe failed: %s", self.name, error)
            self._enter(CircuitState.OPEN)
        elif (
            self._state is CircuitState.CLOSED
            and self._consecutive_failures >= self.failure_threshold
        ):
            logger.error(
                "Circuit '%s' opening after %d consecutive failures",
                self.name,
                self._consecutive_failures,
            )
            self._enter(CircuitState.OPEN)

    async def _reject(self, fallback: AsyncCall | None, wait: float | None) -> Any:
        self._stats.rejected_calls += 1
        if fallback is None:
            raise CircuitOpenError(self.name, retry_after=wait)
        return await fallback()

    async def execute(self, fn: AsyncCall, fallback: AsyncCall | None = None) -> Any:
        """Run ``fn()`` through the breaker.

        Args:
            fn: Zero-argument callable returning an awaitable.
            fallback: Awaited instead of ``fn`` while the circuit is open,
                or while another call is probing a half-open circuit.

        Raises:
            CircuitOpenError: Call rejected and no fallback given.
            ExecutorTimeoutError: ``fn`` exceeded ``call_timeout``.
        """
        self._stats.total_calls += 1

        if self._state is CircuitState.OPEN:
            wait = self._remaining()
            if wait > 0:
                logger.debug("Circuit '%s' open, %.0fs to next attempt", self.name, wait)
                return await self._reject(fallback, wait)
            self._enter(CircuitState.HALF_OPEN)

        probe = self._state is CircuitState.HALF_OPEN
        if probe:
            if self._probe_in_flight:
                logger.debug("Circuit '%s' half-open, probe already running", self.name)
                return await self._reject(fallback, None)
            self._probe_in_flight = True

        try:
            value = await asyncio.wait_for(fn(), timeout=self.call_timeout)
        except TimeoutError as exc:
            self._stats.timeouts += 1
            self.record_failure(exc)
            raise ExecutorTimeoutError(
                f"Call through circuit '{self.name}' timed out after {self.call_timeout}s",
                cause=exc,
            ) from exc
        except Exception as exc:
            self.record_failure(exc)
            raise
        finally:
            if probe:
                self._probe_in_flight = False
        self.record_success()
        return value

    def status(self) -> BreakerStatus:
        wait = max(0.0, self._remaining()) if self._state is CircuitState.OPEN else 0.0
        return BreakerStatus(
            name=self.name,
            state=self._state,
            failure_count=self._consecutive_failures,
            success_count=self._probe_successes,
            last_failure_at=self._last_failure_at,
            last_state_change_at=self._last_change_at,
            seconds_until_next_attempt=wait,
        )

    def reset(self) -> None:
        """Close the circuit and forget the last failure."""
        self._enter(CircuitState.CLOSED)
        self._last_failure_at = None

    def force_open(self) -> None:
        """Open the circuit for ``reset_timeout`` seconds."""
        self._enter(CircuitState.OPEN)


__all__ = [
    "BreakerStatus",
    "CircuitBreaker",
    "CircuitState",
    "CircuitStats",
]
