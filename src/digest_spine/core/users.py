"""Version-checked persistence for user records.

Every ``save`` is conditional on the version that was read: the UPDATE
matches ``id`` *and* ``version``, and bumps ``version`` by one. When the row
exists but the version moved, ``VersionConflictError`` is raised and the
caller must reload and reapply its change (see
:func:`digest_spine.core.retryable_save.save_with_retry`).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from .dialect import Dialect, SQLiteDialect
from .errors import RecordNotFoundError, VersionConflictError
from .models import SCHEDULES_KEY, UserRecord
from .protocols import Connection
from .timestamps import to_iso8601, utc_now

logger = logging.getLogger(__name__)

_SELECT = "SELECT id, email, doc, version FROM users"


def _to_record(row: Sequence[Any]) -> UserRecord:
    user_id, email, doc, version = row
    return UserRecord(
        id=user_id,
        email=email,
        doc=json.loads(doc) if doc else {},
        version=int(version),
    )


class UserRepository:
    """Loads and saves :class:`UserRecord` rows from the ``users`` table.

    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.
        dialect: SQL dialect to use. Defaults to :class:`SQLiteDialect`.
        clock: Source of ``updated_at``.
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.clock = clock

    def _p(self, index: int) -> str:
        return self.dialect.placeholder(index)

    def get(self, user_id: str) -> UserRecord | None:
        """Load a fresh copy of one user, or None if it does not exist."""
        row = self.conn.execute(f"{_SELECT} WHERE id = {self._p(0)}", (user_id,)).fetchone()
        return _to_record(row) if row else None

    def insert(self, user: UserRecord) -> UserRecord:
        self.conn.execute(
            f"INSERT INTO users (id, email, doc, version, updated_at) "
            f"VALUES ({self.dialect.placeholders(5)})",
            (user.id, user.email, json.dumps(user.doc), user.version, to_iso8601(self.clock())),
        )
        self.conn.commit()
        return user

    def list_with_schedules(self) -> list[UserRecord]:
        """All users whose document holds at least one schedule."""
        rows = self.conn.execute(f"{_SELECT} ORDER BY id").fetchall()
        users = [_to_record(row) for row in rows]
        return [user for user in users if user.doc.get(SCHEDULES_KEY)]

    def save(self, user: UserRecord, doc: dict[str, Any]) -> UserRecord:
        """Persist ``doc`` if the stored version still equals ``user.version``.

        Returns:
            The record as persisted, with its incremented version.

        Raises:
            VersionConflictError: The row was modified since ``user`` was read.
            RecordNotFoundError: The row no longer exists.
        """
        cursor = self.conn.execute(
            f"""
            UPDATE users
            SET doc = {self._p(0)},
                version = version + 1,
                updated_at = {self._p(1)}
            WHERE id = {self._p(2)} AND version = {self._p(3)}
            """,
            (json.dumps(doc), to_iso8601(self.clock()), user.id, user.version),
        )
        if cursor.rowcount == 1:
            self.conn.commit()
            return UserRecord(id=user.id, email=user.email, doc=doc, version=user.version + 1)

        self.conn.rollback()
        if self.get(user.id) is None:
            raise RecordNotFoundError(f"User {user.id} no longer exists").with_context(
                user_id=user.id
            )
        logger.debug(f"Version conflict saving user {user.id} at version {user.version}")
        raise VersionConflictError(
            f"User {user.id} changed since version {user.version}"
        ).with_context(user_id=user.id, expected_version=user.version)


__all__ = [
    "UserRepository",
]
