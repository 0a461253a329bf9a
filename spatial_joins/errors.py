"""
Exception taxonomy for report composition and execution.

Validation errors are raised before any SQL reaches the database and are
never retried. Execution errors wrap whatever the driver raised.
"""

from typing import Iterable, Optional


class SpatialJoinError(Exception):
    """Base exception for spatial join reports"""
    pass


class InvalidColumn(SpatialJoinError, ValueError):
    """Raised when a column is not in the schema allow-list"""

    def __init__(self, column: str, table: str, allowed: Optional[Iterable[str]] = None):
        self.column = column
        self.table = table
        self.allowed = sorted(allowed or [])
        message = f"Column {column!r} is not allowed for table {table!r}"
        if self.allowed:
            message += f" (allowed: {', '.join(self.allowed)})"
        super().__init__(message)


class InvalidStrategy(SpatialJoinError, ValueError):
    """Raised when a strategy identifier is unknown or unsupported for a join"""

    def __init__(self, strategy, reason: Optional[str] = None):
        self.strategy = strategy
        message = f"Invalid join strategy: {strategy!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class QueryExecutionError(SpatialJoinError):
    """Raised when the database fails to execute a composed query"""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message)
