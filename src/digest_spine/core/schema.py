"""
Tables owned by the digest scheduler.

Two tables back the whole engine:

- ``users``: one row per user. Preferences, including the embedded
  ``scheduledSummaries`` list, live in the JSON ``doc`` column. ``version``
  is bumped on every write and checked on every update.
- ``scheduler_leases``: at most one row per ``lock_id``; the row is the
  lease.

Tags:
    schema, ddl, sqlite, postgresql, digest-spine
"""

TABLES = {
    "users": "users",
    "leases": "scheduler_leases",
}

SCHEMA_DDL = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT,
            doc TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT
        )
    """,
    "leases": """
        CREATE TABLE IF NOT EXISTS scheduler_leases (
            lock_id TEXT PRIMARY KEY,
            holder TEXT NOT NULL,
            acquired_at TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            heartbeat TEXT NOT NULL
        )
    """,
    "leases_idx_expires": """
        CREATE INDEX IF NOT EXISTS idx_scheduler_leases_expires
        ON scheduler_leases(expires_at)
    """,
}


def create_schema(conn) -> None:
    """
    Create the scheduler tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in SCHEMA_DDL.items():
        conn.execute(ddl)
    conn.commit()
