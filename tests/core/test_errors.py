"""Tests for the DigestError hierarchy."""

from digest_spine.core.errors import (
    CircuitOpenError,
    ConfigError,
    DatabaseError,
    DigestError,
    ErrorCategory,
    ExecutorError,
    ExecutorTimeoutError,
    QueueClearedError,
    RecordNotFoundError,
    ScheduleError,
    VersionConflictError,
)


class TestDigestError:
    """Test base error behaviour."""

    def test_defaults(self):
        error = DigestError("boom")
        assert error.message == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert str(error) == "boom"

    def test_with_context_typed_and_metadata(self):
        """Known keys land on the context, others in metadata."""
        error = DigestError("boom").with_context(user_id="u1", schedule_id="s1", attempt=2)

        assert error.context.user_id == "u1"
        assert error.context.schedule_id == "s1"
        assert error.context.metadata == {"attempt": 2}

    def test_to_dict(self):
        cause = ValueError("bad")
        error = ScheduleError("Invalid schedule time", cause=cause).with_context(user_id="u1")

        data = error.to_dict()

        assert data["error_type"] == "ScheduleError"
        assert data["category"] == "VALIDATION"
        assert data["context"] == {"user_id": "u1"}
        assert data["cause"] == "bad"
        assert error.__cause__ is cause

    def test_retryable_override(self):
        assert DigestError("x", retryable=True).retryable is True


class TestHierarchy:
    """Test category and retry defaults per subclass."""

    def test_version_conflict_retryable(self):
        error = VersionConflictError("stale")
        assert isinstance(error, DatabaseError)
        assert error.category == ErrorCategory.DATABASE
        assert error.retryable is True

    def test_not_found_not_retryable(self):
        assert RecordNotFoundError("gone").retryable is False

    def test_config_error(self):
        assert ConfigError("bad").category == ErrorCategory.CONFIG

    def test_circuit_open(self):
        """CircuitOpenError names the circuit and when to retry."""
        error = CircuitOpenError("executor", retry_after=12.5)

        assert isinstance(error, ExecutorError)
        assert error.name == "executor"
        assert error.retry_after == 12
        assert "retry after 12.5s" in error.message

    def test_timeout_retryable(self):
        assert ExecutorTimeoutError("slow").retryable is True

    def test_queue_cleared(self):
        assert QueueClearedError("cleared").category == ErrorCategory.EXECUTION
