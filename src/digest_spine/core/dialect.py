"""SQL dialects for the lease and user-record statements.

Only two things differ between the databases the scheduler runs on: the
DB-API parameter marker and the spelling of the ``excluded`` pseudo-table
in an upsert. Both SQLite (3.24+) and PostgreSQL support::

    INSERT INTO t (...) VALUES (...)
    ON CONFLICT (key) DO UPDATE SET col = excluded.col
    WHERE <condition on the existing row>

and leave a conflicting row untouched, reporting rowcount 0, when the
``WHERE`` is false. The lease is built on exactly that.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ConfigError


@dataclass(frozen=True)
class Dialect:
    """Statement fragments for one database."""

    name: str = "sqlite"
    marker: str = "?"
    excluded: str = "excluded"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        """Marker for the parameter at 0-based ``index`` (positional styles ignore it)."""
        return self.marker

    def placeholders(self, count: int) -> str:
        return ", ".join([self.marker] * count)

    def conditional_upsert(
        self,
        table: str,
        columns: list[str],
        key_columns: list[str],
        where: str,
    ) -> str:
        """Insert a row, or update the conflicting row only when ``where`` holds.

        ``where`` may reference the existing row as ``{table}.col``; its
        parameters follow the inserted values.
        """
        updates = ", ".join(
            f"{col} = {self.excluded}.{col}" for col in columns if col not in key_columns
        )
        return (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({self.placeholders(len(columns))}) "
            f"ON CONFLICT ({', '.join(key_columns)}) DO UPDATE SET {updates} "
            f"WHERE {where}"
        )


@dataclass(frozen=True)
class SQLiteDialect(Dialect):
    pass


@dataclass(frozen=True)
class PostgreSQLDialect(Dialect):
    """psycopg-style ``%s`` markers."""

    name: str = "postgresql"
    marker: str = "%s"
    excluded: str = "EXCLUDED"


_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """Look up a dialect by database name.

    Raises:
        ConfigError: Unknown database name.
    """
    try:
        return _DIALECTS[db_type.lower()]
    except KeyError:
        raise ConfigError(
            f"Unknown dialect {db_type!r}; expected one of: sqlite, postgresql"
        ) from None



__all__ = [
    "Dialect",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "get_dialect",
]
