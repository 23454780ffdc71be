"""Unit tests for custom exception hierarchy"""
import pytest
from datetime import datetime

import psycopg
from psycopg import errors as pg_errors

from alpine.exceptions import (
    AlpineError,
    ValidationError,
    ScheduleConfigInvalid,
    CompletionRejectedError,
    OccurrenceNotScheduledToday,
    AlreadyCompletedThisPeriod,
    TrackerUnavailableError,
    StorageFailure,
    StorageConnectionError,
    QueryError,
    RecordNotFoundError,
    DuplicateOccurrenceError,
    ConcurrentUpdateError,
    ConfigurationError,
    wrap_external_exception
)


class TestAlpineError:
    """Test base exception class"""

    def test_basic_exception(self):
        """Test basic exception creation"""
        error = AlpineError("Test error")
        assert error.message == "Test error"
        assert error.user_message == "An error occurred. Please try again."
        assert error.request_id is not None
        assert isinstance(error.timestamp, datetime)

    def test_exception_with_context(self):
        """Test exception with full context"""
        error = AlpineError(
            message="Tracker save failed",
            tracker_id="5d0c",
            operation="complete_occurrence",
            context={"task_id": "abc-123"},
            user_message="Could not save your progress"
        )
        assert error.tracker_id == "5d0c"
        assert error.operation == "complete_occurrence"
        assert error.context["task_id"] == "abc-123"
        assert error.user_message == "Could not save your progress"

    def test_exception_with_cause(self):
        """Test exception wrapping another exception"""
        original_error = ValueError("Invalid value")
        error = AlpineError(
            message="Validation failed",
            cause=original_error
        )
        assert error.cause == original_error

    def test_to_dict(self):
        """Test exception serialization"""
        error = AlpineError(
            message="Test error",
            tracker_id="5d0c"
        )
        error_dict = error.to_dict()
        assert error_dict["error"] == "AlpineError"
        assert error_dict["message"] == "Test error"
        assert error_dict["user_message"] == "An error occurred. Please try again."
        assert "request_id" in error_dict
        assert "timestamp" in error_dict


class TestValidationError:
    """Test validation errors"""

    def test_validation_error(self):
        """Test validation error with field"""
        error = ValidationError(
            message="Must be positive",
            field="target_value",
            value=0
        )
        assert error.field == "target_value"
        assert error.value == 0
        assert "Invalid target_value" in error.user_message

    def test_schedule_config_invalid(self):
        error = ScheduleConfigInvalid("Unknown frequency 'fortnightly'", field="frequency", value="fortnightly")

        assert isinstance(error, ValidationError)
        assert error.field == "frequency"
        assert error.user_message.startswith("Invalid schedule")


class TestCompletionRejections:
    """Test completion rejections"""

    def test_not_scheduled_today(self):
        error = OccurrenceNotScheduledToday(
            message="Not scheduled",
            scheduled="weekly on Monday, Wednesday at 09:00"
        )
        assert isinstance(error, CompletionRejectedError)
        assert error.scheduled == "weekly on Monday, Wednesday at 09:00"
        assert "Monday, Wednesday" in error.user_message

    def test_already_completed(self):
        error = AlreadyCompletedThisPeriod()
        assert isinstance(error, CompletionRejectedError)
        assert "already been completed" in error.user_message

    def test_tracker_unavailable(self):
        error = TrackerUnavailableError("Tracker is paused", reason="paused")
        assert error.reason == "paused"
        assert error.user_message == "Tracker is paused."


class TestStorageErrors:
    """Test storage-related errors"""

    def test_connection_error(self):
        """Test connection error"""
        error = StorageConnectionError()
        assert "connection" in error.message.lower()
        assert "database" in error.user_message.lower()

    def test_query_error(self):
        """Test query error"""
        error = QueryError(
            message="Query failed",
            query="SELECT * FROM trackers"
        )
        assert error.query == "SELECT * FROM trackers"

    def test_record_not_found(self):
        """Test record not found"""
        error = RecordNotFoundError(
            message="Tracker not found",
            record_type="Tracker",
            record_id="123"
        )
        assert error.record_type == "Tracker"
        assert error.record_id == "123"
        assert "Tracker not found" in error.user_message

    def test_duplicate_occurrence(self):
        error = DuplicateOccurrenceError("Task exists", occurrence_key="2024-01-15T09:00:00+00:00")
        assert isinstance(error, StorageFailure)
        assert error.occurrence_key == "2024-01-15T09:00:00+00:00"

    def test_concurrent_update(self):
        error = ConcurrentUpdateError("Stale write", expected_version=2, actual_version=3)
        assert error.expected_version == 2
        assert error.actual_version == 3
        assert error.context == {"expected_version": 2, "actual_version": 3}


class TestConfigurationError:
    """Test configuration errors"""

    def test_configuration_error(self):
        """Test configuration error"""
        error = ConfigurationError(
            message="Missing database URL",
            config_key="DATABASE_URL"
        )
        assert error.config_key == "DATABASE_URL"
        assert "not properly configured" in error.user_message


class TestWrapExternalException:
    """Test exception wrapping helper"""

    def test_wrap_alpine_error_passthrough(self):
        """Test wrapping an AlpineError returns it unchanged"""
        original = ValidationError("Test", field="test")
        wrapped = wrap_external_exception(original, operation="test")
        assert wrapped is original

    def test_wrap_unique_violation(self):
        """Test wrapping a unique constraint violation"""
        original = pg_errors.UniqueViolation("duplicate key value violates unique constraint")
        wrapped = wrap_external_exception(original, operation="create_task", tracker_id="5d0c")
        assert isinstance(wrapped, DuplicateOccurrenceError)
        assert wrapped.tracker_id == "5d0c"
        assert wrapped.cause == original

    def test_wrap_operational_error(self):
        """Test wrapping a psycopg connection error"""
        original = psycopg.OperationalError("Connection refused")
        wrapped = wrap_external_exception(original, operation="find_tasks")
        assert isinstance(wrapped, StorageConnectionError)
        assert wrapped.operation == "find_tasks"

    def test_wrap_query_error(self):
        """Test wrapping other psycopg errors"""
        original = psycopg.ProgrammingError("syntax error")
        wrapped = wrap_external_exception(
            original,
            operation="update_tasks",
            context={"query": "UPDATE tasks"}
        )
        assert isinstance(wrapped, QueryError)
        assert wrapped.query == "UPDATE tasks"

    def test_wrap_generic_exception(self):
        """Test wrapping a non-database exception"""
        original = RuntimeError("Something went wrong")
        wrapped = wrap_external_exception(original, operation="test_operation")
        assert isinstance(wrapped, StorageFailure)
        assert "test_operation failed" in wrapped.message
        assert wrapped.cause == original


class TestExceptionHierarchy:
    """Test exception inheritance"""

    @pytest.mark.parametrize("error_class", [
        ValidationError,
        CompletionRejectedError,
        TrackerUnavailableError,
        StorageFailure,
        ConfigurationError,
    ])
    def test_all_inherit_from_base(self, error_class):
        assert issubclass(error_class, AlpineError)

    def test_storage_errors_inherit(self):
        """Test storage errors share a base"""
        for error_class in (StorageConnectionError, QueryError, RecordNotFoundError,
                            DuplicateOccurrenceError, ConcurrentUpdateError):
            assert issubclass(error_class, StorageFailure)

    def test_can_catch_by_base_class(self):
        """Test catching specific errors by base class"""
        with pytest.raises(CompletionRejectedError):
            raise AlreadyCompletedThisPeriod()

        with pytest.raises(AlpineError):
            raise ConcurrentUpdateError("Stale write")
