"""Digest Spine Core -- persistence, errors, config and logging primitives.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          DigestError hierarchy (VersionConflictError, ...)
        protocols.py       Connection and Executor protocols
        timestamps.py      UTC helpers (stdlib-only)
        models.py          UserRecord / Schedule

    Layer 2 -- Database
        dialect.py         SQLite / PostgreSQL SQL fragments
        schema.py          users + scheduler_leases DDL
        users.py           UserRepository (version-checked save)

    Layer 3 -- Change Reconciliation
        patch.py           Immutable field-level Patch
        retry.py           Backoff strategies
        retryable_save.py  save_with_retry

    Layer 4 -- Ambient
        settings.py        DigestSettings (pydantic-settings)
        logging.py         structlog configuration
"""

from digest_spine.core.errors import (
    CircuitOpenError,
    ConfigError,
    DatabaseError,
    DigestError,
    ErrorCategory,
    ErrorContext,
    ExecutorError,
    ExecutorTimeoutError,
    PatchPathError,
    QueueClearedError,
    RecordNotFoundError,
    ScheduleError,
    VersionConflictError,
)
from digest_spine.core.models import Schedule, UserRecord
from digest_spine.core.patch import REMOVE, Patch
from digest_spine.core.protocols import Connection, Executor
from digest_spine.core.retryable_save import SaveOutcome, SaveResult, save_with_retry
from digest_spine.core.schema import create_schema
from digest_spine.core.timestamps import from_iso8601, to_iso8601, utc_now
from digest_spine.core.users import UserRepository

__all__ = [
    # errors
    "DigestError",
    "ErrorCategory",
    "ErrorContext",
    "ConfigError",
    "DatabaseError",
    "RecordNotFoundError",
    "VersionConflictError",
    "ScheduleError",
    "PatchPathError",
    "ExecutorError",
    "CircuitOpenError",
    "ExecutorTimeoutError",
    "QueueClearedError",
    # models
    "Schedule",
    "UserRecord",
    # persistence
    "Connection",
    "Executor",
    "create_schema",
    "UserRepository",
    # reconciliation
    "Patch",
    "REMOVE",
    "SaveOutcome",
    "SaveResult",
    "save_with_retry",
    # time
    "utc_now",
    "to_iso8601",
    "from_iso8601",
]
