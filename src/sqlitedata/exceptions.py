"""
Database-specific exception classes.
"""
import re
import sqlite3

import sqlalchemy.exc

RETRYABLE_PATTERNS = [
    # Writer lock held by another connection
    r'database is locked',
    r'database table is locked',
    r'database.*busy',
    # File system hiccups
    r'disk i/o error',
    # Timeouts
    r'timeout',
    r'timed out',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Returns True for errors that are likely transient and may succeed on retry:
    - Locked or busy database file
    - I/O errors while opening the file
    - Timeouts

    Returns False for errors that will definitely fail again:
    - Syntax errors
    - Type mismatches
    - Constraint violations

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    error_msg = str(exc).lower()
    return bool(_RETRYABLE_REGEX.search(error_msg))


class DatabaseError(Exception):
    """Base class for all sqlitedata errors.
    """


class ConnectionFailure(DatabaseError):
    """Error opening or closing a database handle.
    """


class BindingError(DatabaseError):
    """Parameter and placeholder mismatch while binding a command.
    """

    def __init__(self, message: str, sql: str | None = None,
                 parameter: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.parameter = parameter


class TypeConversionError(DatabaseError):
    """Raw column value cannot be coerced to the requested type.
    """


class QueryError(DatabaseError):
    """Error executing a command against the engine.

    Carries the offending command text and the names of the bound parameters.
    The engine exception is chained as ``__cause__``.
    """

    def __init__(self, message: str, sql: str | None = None,
                 parameters: list[str] | tuple[str, ...] | None = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.parameters = tuple(parameters or ())

    def __str__(self) -> str:
        message = super().__str__()
        if self.sql is None:
            return message
        names = ', '.join(self.parameters) or '-'
        return f'{message}\nSQL: {self.sql}\nparameters: {names}'


class IntegrityViolationError(QueryError):
    """Database constraint violation error.
    """


class TransactionError(DatabaseError):
    """Error committing or rolling back a transaction.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


DbConnectionError = (
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    sqlalchemy.exc.OperationalError,
    sqlalchemy.exc.InterfaceError,
    ConnectionFailure,
    )

IntegrityError = (
    sqlite3.IntegrityError,
    sqlalchemy.exc.IntegrityError,
    IntegrityViolationError,
    )

ProgrammingError = (
    sqlite3.ProgrammingError,
    sqlite3.DatabaseError,
    sqlalchemy.exc.ProgrammingError,
    QueryError,
    )

OperationalError = (
    sqlite3.OperationalError,
    sqlalchemy.exc.OperationalError,
    )
