"""Backoff policies for reconciling version-conflicted saves.

Two writers that conflicted once tend to conflict again if they retry in
lockstep, so the exponential policy spreads each delay by a random
fraction.

Example:
    >>> policy = ExponentialBackoff(max_retries=3, base_delay=0.05, max_delay=1.0)
    >>> [round(policy.next_delay(n), 2) for n in range(3)]  # doctest: +SKIP
    [0.05, 0.11, 0.19]
"""

import random
from dataclasses import dataclass
from typing import Protocol


class RetryStrategy(Protocol):
    """Decides whether and when a failed attempt is retried.

    ``attempt`` is the number of retries already made (0 before the first
    retry).
    """

    max_retries: int

    def next_delay(self, attempt: int) -> float: ...

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool: ...


@dataclass(frozen=True)
class ExponentialBackoff:
    """``base_delay * factor ** attempt`` capped at ``max_delay``.

    Attributes:
        spread: Each delay is scaled by a random factor in
            ``[1 - spread, 1 + spread]``; 0 gives exact delays
        retry_on: Only these exception types are retried
    """

    max_retries: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0
    factor: float = 2.0
    spread: float = 0.25
    retry_on: tuple[type[Exception], ...] = (Exception,)

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * self.factor**attempt, self.max_delay)
        if self.spread:
            delay *= 1 + random.uniform(-self.spread, self.spread)
        return max(delay, 0.0)

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_retries:
            return False
        return error is None or isinstance(error, self.retry_on)


@dataclass(frozen=True)
class ConstantBackoff:
    """Same delay before every retry; ``delay=0`` for tests."""

    max_retries: int = 3
    delay: float = 0.0

    def next_delay(self, attempt: int) -> float:
        return self.delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return attempt < self.max_retries


__all__ = [
    "ConstantBackoff",
    "ExponentialBackoff",
    "RetryStrategy",
]
