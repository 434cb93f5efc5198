"""
Structural protocols for digest-spine.

Manifesto:
    The scheduler depends on shapes, not implementations. A ``Connection``
    is anything DB-API-like (``sqlite3.Connection``, a psycopg connection);
    an ``Executor`` is whatever produces and delivers a digest for one
    (user, schedule) pair. Neither is imported concretely anywhere in the
    scheduling code.

Architecture:
    ::

        protocols.py
        ├── Connection  sync DB-API shape (sqlite3, psycopg)
        └── Executor    async digest producer, called after a claim

Guardrails:
    ❌ DON'T: Re-check ``lastRun`` inside an Executor
    ✅ DO: Trust the claim protocol; it has already recorded the run

Tags:
    protocol, connection, executor, decoupling, digest-spine
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import Schedule, UserRecord


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    ``execute`` must return a cursor exposing ``rowcount``, ``fetchone()``
    and ``fetchall()``; the lease relies on ``rowcount`` to tell whether a
    conditional write took effect.

    Examples:
        >>> def count_users(conn: Connection) -> int:
        ...     cursor = conn.execute("SELECT COUNT(*) FROM users")
        ...     return cursor.fetchone()[0]
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters. SYNC."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets. SYNC."""
        ...

    def commit(self) -> None:
        """Commit current transaction. SYNC."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction. SYNC."""
        ...


@runtime_checkable
class Executor(Protocol):
    """
    Produces and delivers one digest.

    Invoked at most once per (user, schedule, local day), after the claim
    has been persisted. Raising marks the run as failed; the claim is not
    rolled back, so there is no same-day retry.
    """

    async def execute(self, user: UserRecord, schedule: Schedule) -> Any:
        """Run the digest for ``schedule`` on behalf of ``user``."""
        ...


__all__ = [
    "Connection",
    "Executor",
]
