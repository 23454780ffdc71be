"""
Standardized exception hierarchy for the Alpine tracker engine
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class AlpineError(Exception):
    """
    Base exception for all engine errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise AlpineError(
            message="Failed to save tracker",
            tracker_id="5d0c...",
            operation="complete_occurrence",
            context={"task_id": "abc-123"}
        )
    """

    log_level: int = logging.ERROR

    def __init__(
        self,
        message: str,
        tracker_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.tracker_id = str(tracker_id) if tracker_id is not None else None
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "tracker_id": self.tracker_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(
                self.log_level,
                f"{self.__class__.__name__}: {self.message}",
                extra=log_data,
                exc_info=self.cause
            )
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (User Input)
# ==========================================

class ValidationError(AlpineError):
    """
    Raised when user input fails validation

    Example:
        raise ValidationError(
            message="Target value must be positive",
            field="target_value",
            value=0
        )
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        kwargs.setdefault("user_message", f"Invalid {field}: {message}" if field else message)
        super().__init__(
            message=message,
            context={"field": field, "value": value},
            **kwargs
        )


class ScheduleConfigInvalid(ValidationError):
    """Tracker schedule fields are malformed and no default can stand in"""

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None, **kwargs):
        super().__init__(
            message=message,
            field=field,
            value=value,
            user_message=f"Invalid schedule: {message}",
            **kwargs
        )


# ==========================================
# Completion Rejections
# ==========================================

class CompletionRejectedError(AlpineError):
    """
    Base class for completions the gamification engine refuses to register.

    The task status is left (or restored) to what it was before the attempt.
    """

    log_level = logging.WARNING


class OccurrenceNotScheduledToday(CompletionRejectedError):
    """Completion attempted on a day/date outside the tracker's schedule"""

    def __init__(self, message: str, scheduled: Optional[str] = None, **kwargs):
        self.scheduled = scheduled
        super().__init__(
            message=message,
            user_message=(
                f"This tracker is not scheduled for today. Scheduled: {scheduled}"
                if scheduled else "This tracker is not scheduled for today."
            ),
            context={"scheduled": scheduled},
            **kwargs
        )


class AlreadyCompletedThisPeriod(CompletionRejectedError):
    """Duplicate completion of a single-target tracker"""

    def __init__(self, message: str = "Tracker already completed for this occurrence", **kwargs):
        super().__init__(
            message=message,
            user_message="This tracker has already been completed today. Come back tomorrow!",
            **kwargs
        )


class TrackerUnavailableError(AlpineError):
    """Operation needs an active, unpaused tracker"""

    log_level = logging.WARNING

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs):
        self.reason = reason
        super().__init__(
            message=message,
            user_message=f"Tracker is {reason}." if reason else "Tracker is not available.",
            context={"reason": reason},
            **kwargs
        )


# ==========================================
# Storage Errors
# ==========================================

class StorageFailure(AlpineError):
    """
    Base class for storage collaborator errors
    """
    pass


class StorageConnectionError(StorageFailure):
    """Store connection failed"""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class QueryError(StorageFailure):
    """Store query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your data. Please try again.",
            context={"query": query},
            **kwargs
        )


class RecordNotFoundError(StorageFailure):
    """Requested record does not exist"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = str(record_id) if record_id is not None else None
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": self.record_id},
            **kwargs
        )


class DuplicateOccurrenceError(StorageFailure):
    """A non-archived task already exists for this (tracker, occurrence)"""

    log_level = logging.DEBUG

    def __init__(self, message: str, occurrence_key: Optional[str] = None, **kwargs):
        self.occurrence_key = occurrence_key
        super().__init__(
            message=message,
            user_message="A task for this occurrence already exists.",
            context={"occurrence_key": occurrence_key},
            **kwargs
        )


class ConcurrentUpdateError(StorageFailure):
    """Optimistic version check failed on a tracker write"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
        **kwargs
    ):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            message=message,
            user_message="This tracker was updated by another request. Please try again.",
            context={"expected_version": expected_version, "actual_version": actual_version},
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(AlpineError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    tracker_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> AlpineError:
    """
    Wrap psycopg exceptions into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        tracker_id: Tracker ID if applicable
        context: Additional context

    Returns:
        Appropriate AlpineError subclass

    Example:
        try:
            await cur.execute(query, params)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="create_task", context={"query": query})
    """
    # Import here to avoid circular dependencies
    import psycopg
    from psycopg import errors as pg_errors

    if isinstance(error, AlpineError):
        return error

    if isinstance(error, pg_errors.UniqueViolation):
        return DuplicateOccurrenceError(
            message=f"Unique constraint violated: {str(error)}",
            tracker_id=tracker_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, psycopg.OperationalError):
        return StorageConnectionError(
            message=f"Database connection failed: {str(error)}",
            tracker_id=tracker_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            query=(context or {}).get("query"),
            tracker_id=tracker_id,
            operation=operation,
            cause=error
        )

    # Generic fallback
    return StorageFailure(
        message=f"{operation} failed: {str(error)}",
        tracker_id=tracker_id,
        operation=operation,
        context=context,
        cause=error
    )
