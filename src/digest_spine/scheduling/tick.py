"""Boundary-aligned asyncio timer for the check pass.

┌──────────────────────────────────────────────────────────────────────────────┐
│  TickScheduler                                                               │
│                                                                              │
│  while not stopped:                                                          │
│      boundary = next multiple of interval strictly after now (epoch aligned) │
│      sleep max(boundary - now, min_delay)   (wakes early on stop())          │
│      trigger()                                                               │
│          in_progress? ──yes──► skip, count                                   │
│          run callback; any exception is logged and recorded                  │
│                                                                              │
│  The boundary is recomputed every cycle from the clock, so a slow pass or a │
│  late wake-up never accumulates drift. A 600s interval fires at :00, :10,   │
│  :20, :30, :40 and :50 past the hour.                                        │
└──────────────────────────────────────────────────────────────────────────────┘

The in-progress flag only guards against overlapping passes inside one
process; cross-process exclusion is the lease's job.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from digest_spine.core.logging import get_logger
from digest_spine.core.timestamps import to_iso8601, utc_now

logger = get_logger(__name__)

TickCallback = Callable[[], Awaitable[None]]

DEFAULT_INTERVAL_SECONDS = 600.0
DEFAULT_MIN_DELAY_SECONDS = 1.0


def next_boundary(now: datetime, interval_seconds: float) -> datetime:
    """The first epoch-aligned multiple of ``interval_seconds`` strictly after ``now``."""
    epoch = now.timestamp()
    boundary = (math.floor(epoch / interval_seconds) + 1) * interval_seconds
    return datetime.fromtimestamp(boundary, UTC)


def delay_until_next(
    now: datetime,
    interval_seconds: float,
    min_delay_seconds: float = DEFAULT_MIN_DELAY_SECONDS,
) -> float:
    """Seconds to sleep before the next boundary, never below the floor."""
    remaining = (next_boundary(now, interval_seconds) - now).total_seconds()
    return max(remaining, min_delay_seconds)


@dataclass
class TickState:
    """In-process state of one TickScheduler."""

    in_progress: bool = False
    tick_count: int = 0
    skipped_reentrant: int = 0
    error_count: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None
    next_tick_at: datetime | None = None
    drift_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "in_progress": self.in_progress,
            "tick_count": self.tick_count,
            "skipped_reentrant": self.skipped_reentrant,
            "error_count": self.error_count,
            "last_tick_at": to_iso8601(self.last_tick_at),
            "last_error": self.last_error,
            "next_tick_at": to_iso8601(self.next_tick_at),
            "drift_ms": self.drift_ms,
        }


class TickScheduler:
    """Runs ``callback`` at every interval boundary until stopped.

    Example:
        >>> async def check_pass():
        ...     ...
        >>> ticker = TickScheduler(check_pass, interval_seconds=600)
        >>> ticker.start()
        >>> # ... later ...
        >>> await ticker.stop()
    """

    def __init__(
        self,
        callback: TickCallback,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        min_delay_seconds: float = DEFAULT_MIN_DELAY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.callback = callback
        self.interval_seconds = interval_seconds
        self.min_delay_seconds = min_delay_seconds
        self.clock = clock
        self.state = TickState()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop as a task on the running event loop."""
        if self.is_running:
            logger.warning("tick_scheduler_already_running")
            return
        self._stop_event.clear()
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="digest-tick-scheduler"
        )
        logger.info("tick_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the loop and wait for an in-flight pass to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("tick_scheduler_stopped", tick_count=self.state.tick_count)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            now = self.clock()
            delay = delay_until_next(now, self.interval_seconds, self.min_delay_seconds)
            planned = next_boundary(now, self.interval_seconds)
            self.state.next_tick_at = planned
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except TimeoutError:
                pass
            self.state.drift_ms = (self.clock() - planned).total_seconds() * 1000
            await self.trigger()

    async def trigger(self) -> bool:
        """Run one pass now unless one is already in progress.

        Returns:
            True if the callback ran (successfully or not), False if skipped.
        """
        if self.state.in_progress:
            self.state.skipped_reentrant += 1
            logger.warning("tick_skipped_pass_in_progress")
            return False

        self.state.in_progress = True
        self.state.tick_count += 1
        self.state.last_tick_at = self.clock()
        try:
            await self.callback()
            self.state.last_error = None
        except Exception as e:
            self.state.error_count += 1
            self.state.last_error = str(e)
            logger.exception("tick_failed", tick=self.state.tick_count)
        finally:
            self.state.in_progress = False
        return True

    def health(self) -> dict[str, Any]:
        return {
            "healthy": self.is_running,
            "interval_seconds": self.interval_seconds,
            **self.state.to_dict(),
        }


__all__ = [
    "DEFAULT_INTERVAL_SECONDS",
    "DEFAULT_MIN_DELAY_SECONDS",
    "TickCallback",
    "TickScheduler",
    "TickState",
    "delay_until_next",
    "next_boundary",
]
