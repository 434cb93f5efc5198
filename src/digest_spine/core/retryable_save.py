"""
Reconciling saves for user documents.

``save_with_retry`` persists a :class:`~digest_spine.core.patch.Patch`
against the current version of a user record. When another writer got
there first, it reloads the record, re-checks the caller's precondition on
the fresh copy and reapplies *only the patch*, so concurrent changes to
other fields survive.

Architecture:
    ::

        load (or use initial) ──► precondition? ──no──► SKIPPED
                                      │yes
                                      ▼
                             apply patch, save@version
                                      │
                   ┌──────────────────┼──────────────────────┐
                   ▼                  ▼                      ▼
                 SAVED       VersionConflictError      other error
                                      │                 (propagates)
                           retries left? ──no──► raise VersionConflictError
                                      │yes
                                 backoff, reload ──► precondition? ...

Examples:
    >>> patch = Patch().set(("scheduledSummaries", "s1", "lastRun"), stamp)
    >>> result = await save_with_retry(users, "u1", patch)
    >>> result.saved
    True

Tags:
    optimistic-concurrency, retry, reconciliation, digest-spine
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .errors import RecordNotFoundError, VersionConflictError
from .models import UserRecord
from .patch import Patch
from .retry import ExponentialBackoff, RetryStrategy
from .users import UserRepository

logger = logging.getLogger(__name__)

# Total saves, first attempt included.
DEFAULT_MAX_ATTEMPTS = 3

Precondition = Callable[[UserRecord], bool]


class SaveOutcome(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SaveResult:
    """What ``save_with_retry`` did.

    ``record`` is the persisted record for SAVED and the fresh record that
    failed the precondition for SKIPPED.
    """

    outcome: SaveOutcome
    record: UserRecord
    attempts: int

    @property
    def saved(self) -> bool:
        return self.outcome == SaveOutcome.SAVED


def default_strategy(max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> RetryStrategy:
    """Exponential backoff on version conflicts, at most ``max_attempts`` saves in all."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    return ExponentialBackoff(
        max_retries=max_attempts - 1,
        retry_on=(VersionConflictError,),
    )


async def save_with_retry(
    users: UserRepository,
    user_id: str,
    patch: Patch,
    *,
    precondition: Precondition | None = None,
    initial: UserRecord | None = None,
    strategy: RetryStrategy | None = None,
) -> SaveResult:
    """Apply ``patch`` to the user's document and persist it.

    Args:
        users: Repository to load from and save to.
        user_id: Owning record.
        patch: Changes to apply; reapplied on every attempt.
        precondition: Evaluated on each loaded copy before applying the
            patch. Returning False ends the call with SKIPPED and no write.
        initial: Already-loaded record to use for the first attempt.
        strategy: Retry bound and backoff. Defaults to three saves in all with
            short exponential backoff.

    Raises:
        VersionConflictError: Every attempt lost the version race.
        RecordNotFoundError: The record does not exist (or was deleted).
    """
    strategy = strategy or default_strategy()
    record = initial
    retries = 0

    while True:
        if record is None:
            record = users.get(user_id)
            if record is None:
                raise RecordNotFoundError(f"User {user_id} not found").with_context(
                    user_id=user_id
                )

        if precondition is not None and not precondition(record):
            logger.debug(f"Precondition failed for user {user_id}; skipping save")
            return SaveResult(SaveOutcome.SKIPPED, record, retries + 1)

        try:
            saved = users.save(record, patch.apply(record.doc))
            if retries:
                logger.info(f"Saved user {user_id} after {retries} reconciliation retries")
            return SaveResult(SaveOutcome.SAVED, saved, retries + 1)
        except VersionConflictError as e:
            if not strategy.should_retry(retries, e):
                logger.warning(
                    f"Giving up on user {user_id} after {retries} reconciliation retries"
                )
                raise VersionConflictError(
                    f"User {user_id} still conflicting after {retries} retries",
                    cause=e,
                ).with_context(user_id=user_id, retries=retries)
            delay = strategy.next_delay(retries)
            retries += 1
            logger.debug(
                f"Version conflict on user {user_id}; retry {retries} in {delay:.3f}s"
            )
            await asyncio.sleep(delay)
            record = None


__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "Precondition",
    "SaveOutcome",
    "SaveResult",
    "default_strategy",
    "save_with_retry",
]
