"""TTL lease guarding the scheduler's check pass.

Manifesto:
    Several server processes run the same timer. Only one of them may run a
    check pass at a time, and a process that dies mid-pass must not hold
    the others off forever. The lease is a single row keyed by ``lock_id``
    that a holder owns until ``expires_at``; taking it over is one atomic
    conditional upsert, so two racing processes cannot both win.

Tags:
    digest-spine, scheduling, distributed-lease, TTL, concurrency

    Lease Flow::

        A: acquire ──► INSERT ... ON CONFLICT DO UPDATE WHERE expired OR holder=A
                        rowcount 1 ──► ACQUIRED
        B: acquire ──► same statement, WHERE false, rowcount 0 ──► CONTENDED
        A: heartbeat ─► UPDATE expires_at WHERE holder=A AND not expired
        A: release ──► DELETE WHERE holder=A
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from digest_spine.core.dialect import Dialect, SQLiteDialect
from digest_spine.core.protocols import Connection
from digest_spine.core.timestamps import from_iso8601, to_iso8601, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LOCK_ID = "scheduler-main"
DEFAULT_TTL_SECONDS = 300

_COLUMNS = ["lock_id", "holder", "acquired_at", "expires_at", "heartbeat"]


class LeaseAcquisition(str, Enum):
    """Result of ``SchedulerLease.acquire``."""

    ACQUIRED = "acquired"
    CONTENDED = "contended"


@dataclass(frozen=True)
class LeaseInfo:
    """A live lease row."""

    lock_id: str
    holder: str
    acquired_at: datetime
    expires_at: datetime
    heartbeat: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "lock_id": self.lock_id,
            "holder": self.holder,
            "acquired_at": to_iso8601(self.acquired_at),
            "expires_at": to_iso8601(self.expires_at),
            "heartbeat": to_iso8601(self.heartbeat),
        }


def _is_unique_violation(error: Exception) -> bool:
    # sqlite3.IntegrityError, psycopg.errors.UniqueViolation (an IntegrityError subclass)
    return any(cls.__name__ == "IntegrityError" for cls in type(error).__mro__)


class SchedulerLease:
    """Distributed, TTL-bounded lease for one ``lock_id``.

    Example:
        >>> lease = SchedulerLease(conn, holder="web-1")
        >>> if lease.acquire() is LeaseAcquisition.ACQUIRED:
        ...     try:
        ...         run_pass()
        ...     finally:
        ...         lease.release()
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect = SQLiteDialect(),
        lock_id: str = DEFAULT_LOCK_ID,
        holder: str | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the lease.

        Args:
            conn: Database connection
            dialect: SQL dialect for portable queries
            lock_id: Lease key; every process contending for the same pass uses the same id
            holder: Identity of this process. Auto-generated if not provided.
            ttl_seconds: Default lease duration
            clock: Source of "now"
        """
        self.conn = conn
        self.dialect = dialect
        self.lock_id = lock_id
        self.holder = holder or str(uuid4())
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _ph(self, index: int) -> str:
        """Generate dialect-specific placeholder at 1-based position."""
        return self.dialect.placeholder(index - 1)

    def acquire(self, duration_seconds: int | None = None) -> LeaseAcquisition:
        """Take the lease if it is free, expired, or already ours.

        A uniqueness violation from a racing insert is reported as
        CONTENDED rather than raised.
        """
        now = self.clock()
        expires = now + timedelta(seconds=duration_seconds or self.ttl_seconds)
        sql = self.dialect.conditional_upsert(
            "scheduler_leases",
            _COLUMNS,
            ["lock_id"],
            where=(
                f"scheduler_leases.expires_at < {self._ph(6)} "
                f"OR scheduler_leases.holder = {self._ph(7)}"
            ),
        )
        stamp = to_iso8601(now)
        try:
            cursor = self.conn.execute(
                sql,
                (
                    self.lock_id,
                    self.holder,
                    stamp,
                    to_iso8601(expires),
                    stamp,
                    stamp,
                    self.holder,
                ),
            )
        except Exception as e:
            if not _is_unique_violation(e):
                raise
            self.conn.rollback()
            logger.debug(f"Lease {self.lock_id} contended (unique violation): {e}")
            return LeaseAcquisition.CONTENDED

        self.conn.commit()
        if cursor.rowcount == 1:
            logger.debug(f"Lease {self.lock_id} acquired by {self.holder} until {expires}")
            return LeaseAcquisition.ACQUIRED

        logger.debug(f"Lease {self.lock_id} held by another instance")
        return LeaseAcquisition.CONTENDED

    def heartbeat(self, extend_seconds: int | None = None) -> bool:
        """Push ``expires_at`` forward if this holder still owns a live lease."""
        now = self.clock()
        expires = now + timedelta(seconds=extend_seconds or self.ttl_seconds)
        cursor = self.conn.execute(
            f"""
            UPDATE scheduler_leases
            SET expires_at = {self._ph(1)}, heartbeat = {self._ph(2)}
            WHERE lock_id = {self._ph(3)} AND holder = {self._ph(4)}
              AND expires_at >= {self._ph(5)}
            """,
            (to_iso8601(expires), to_iso8601(now), self.lock_id, self.holder, to_iso8601(now)),
        )
        self.conn.commit()

        if cursor.rowcount > 0:
            logger.debug(f"Lease {self.lock_id} extended to {expires}")
            return True
        logger.warning(f"Heartbeat failed: lease {self.lock_id} no longer held by {self.holder}")
        return False

    def release(self) -> bool:
        """Delete the lease row if this holder owns it.

        Returns:
            True if released, False if not held (no-op)
        """
        cursor = self.conn.execute(
            f"""
            DELETE FROM scheduler_leases
            WHERE lock_id = {self._ph(1)} AND holder = {self._ph(2)}
            """,
            (self.lock_id, self.holder),
        )
        self.conn.commit()

        if cursor.rowcount > 0:
            logger.debug(f"Lease {self.lock_id} released by {self.holder}")
            return True
        return False

    def cleanup_expired(self) -> int:
        """Remove every expired lease row.

        Returns:
            Number of rows removed
        """
        cursor = self.conn.execute(
            f"DELETE FROM scheduler_leases WHERE expires_at < {self._ph(1)}",
            (to_iso8601(self.clock()),),
        )
        self.conn.commit()

        count = cursor.rowcount
        if count > 0:
            logger.info(f"Cleaned up {count} expired leases")
        return count

    def get_info(self) -> LeaseInfo | None:
        """The live lease for ``lock_id``, or None if free or expired."""
        cursor = self.conn.execute(
            f"""
            SELECT lock_id, holder, acquired_at, expires_at, heartbeat
            FROM scheduler_leases
            WHERE lock_id = {self._ph(1)} AND expires_at >= {self._ph(2)}
            """,
            (self.lock_id, to_iso8601(self.clock())),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return LeaseInfo(
            lock_id=row[0],
            holder=row[1],
            acquired_at=from_iso8601(row[2]),
            expires_at=from_iso8601(row[3]),
            heartbeat=from_iso8601(row[4]),
        )

    def is_held(self) -> bool:
        """True if this holder currently owns a live lease."""
        info = self.get_info()
        return info is not None and info.holder == self.holder


__all__ = [
    "DEFAULT_LOCK_ID",
    "DEFAULT_TTL_SECONDS",
    "LeaseAcquisition",
    "LeaseInfo",
    "SchedulerLease",
]
