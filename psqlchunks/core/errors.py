"""
Engine-level exceptions.

These signal that the database session itself is unusable. Problems with a
chunk's own SQL are never raised; they are recorded in the chunk's
diagnostics instead.
"""

from __future__ import annotations


class DbError(Exception):
    """Base exception for session-fatal database errors."""


class ConnectionLost(DbError):
    """Raised when there is no usable connection to the server."""

    def __init__(self, message: str = "lost db connection") -> None:
        super().__init__(message)


class StatementDispatchError(DbError):
    """Raised when a statement could not be sent or its result not read."""

    def __init__(self, sql: str, detail: str) -> None:
        self.sql = sql
        super().__init__(f'could not execute query "{sql}": {detail}')


class ClockError(DbError):
    """Raised when the monotonic clock gives an unusable reading."""
