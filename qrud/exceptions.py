"""Exceptions raised by qrud.

Builder-time errors (bad identifiers, bad condition shapes) are also
``ValueError`` subclasses so callers can treat them as plain argument errors.
"""

from typing import Any


class QrudError(Exception):
    """Base exception for all qrud errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """
        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidIdentifier(QrudError, ValueError):
    """A table, field or column name failed validation."""


class InvalidConditionShape(QrudError, ValueError):
    """A condition was given values that don't fit its shape (IN, BETWEEN, operator)."""


class ConnectionUnavailable(QrudError):
    """No executor was registered, or the registered factory failed."""

    def __init__(
        self,
        message: str = "No database connection available",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)


class QueryExecutionFailed(QrudError):
    """Wraps a failure raised by the statement executor."""

    def __init__(
        self,
        message: str = "Query execution failed",
        sql: str | None = None,
        params: list[Any] | None = None,
    ):
        super().__init__(message, details={"sql": sql, "params": params})
        self.sql = sql
        self.params = params
