"""
Exception hierarchy for digest-spine.

Each failure the check pass can hit has its own ``DigestError`` subclass.
The class decides two things up front: the ``ErrorCategory`` it is logged
under and whether another attempt could succeed. Identifiers of the user,
schedule and lease involved travel on the exception in an ``ErrorContext``
so the log line for a failed digest can be traced back without guessing.

Layout:
    ::

        DigestError ............................ INTERNAL
        ├── ConfigError ........................ CONFIG
        ├── DatabaseError ...................... DATABASE
        │   ├── RecordNotFoundError
        │   └── VersionConflictError           (retryable)
        ├── ScheduleError ...................... VALIDATION
        │   └── PatchPathError
        └── ExecutorError ...................... EXECUTION
            ├── CircuitOpenError
            ├── ExecutorTimeoutError           (retryable)
            └── QueueClearedError

Examples:
    >>> err = VersionConflictError("stale write").with_context(user_id="u1")
    >>> err.retryable
    True
    >>> err.to_dict()["context"]
    {'user_id': 'u1'}

Tags:
    errors, retry, context, digest-spine
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Where an error is routed when logged."""

    DATABASE = "DATABASE"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    SCHEDULING = "SCHEDULING"
    EXECUTION = "EXECUTION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Identifiers attached to an error.

    The named fields are the ones the scheduler deals in. Any other key
    given to :meth:`DigestError.with_context` goes into ``metadata``.
    """

    user_id: str | None = None
    schedule_id: str | None = None
    lock_id: str | None = None
    holder: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if k != "metadata" and v is not None}
        data.update(self.metadata)
        return data


_CONTEXT_FIELDS = frozenset(f.name for f in fields(ErrorContext)) - {"metadata"}


class DigestError(Exception):
    """Root of every error raised by digest-spine.

    ``category`` and ``retryable`` come from the class unless overridden
    per instance.
    """

    category: ErrorCategory = ErrorCategory.INTERNAL
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        if retryable is not None:
            self.retryable = retryable
        self.retry_after = retry_after
        self.context = context if context is not None else ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **values: Any) -> DigestError:
        """Attach identifiers and return ``self`` so it can be raised inline."""
        for key, value in values.items():
            if key in _CONTEXT_FIELDS:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Flat representation for a structured log event."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if context := self.context.to_dict():
            data["context"] = context
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class ConfigError(DigestError):
    """Settings are missing or invalid."""

    category = ErrorCategory.CONFIG


class DatabaseError(DigestError):
    category = ErrorCategory.DATABASE


class RecordNotFoundError(DatabaseError):
    """The user record was deleted or never existed."""


class VersionConflictError(DatabaseError):
    """Another writer committed first; the write was based on a stale version.

    ``save_with_retry`` reloads, reapplies its patch and tries again.
    """

    retryable = True


class ScheduleError(DigestError):
    """Malformed schedule entry, such as an unparseable time."""

    category = ErrorCategory.VALIDATION


class PatchPathError(ScheduleError):
    """A patch path does not resolve against the document."""


class ExecutorError(DigestError):
    """Digest generation failed."""

    category = ErrorCategory.EXECUTION


class CircuitOpenError(ExecutorError):
    """The executor circuit is open and rejected the call."""

    def __init__(self, name: str, retry_after: float | None = None):
        message = f"Circuit '{name}' is open"
        if retry_after is not None:
            message += f", retry after {retry_after:.1f}s"
        super().__init__(
            message,
            retry_after=None if retry_after is None else int(retry_after),
        )
        self.name = name


class ExecutorTimeoutError(ExecutorError):
    """The executor call ran past its deadline."""

    retryable = True


class QueueClearedError(ExecutorError):
    """The job was still pending when the queue was cleared."""


__all__ = [
    "CircuitOpenError",
    "ConfigError",
    "DatabaseError",
    "DigestError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutorError",
    "ExecutorTimeoutError",
    "PatchPathError",
    "QueueClearedError",
    "RecordNotFoundError",
    "ScheduleError",
    "VersionConflictError",
]
