"""
Command and cursor implementations over sqlite3.

`Command` binds parameters and executes against an open handle; `Cursor` is
the forward-only reader over a command's result rows; `RowStream` is the lazy
sequence of materialized values returned by multi-row selects.

A cursor is valid only while it is open and its handle is open. Reading from
a closed cursor, or iterating a closed stream, raises `QueryError`.
"""
import datetime
import decimal
import enum
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from functools import wraps
from typing import TYPE_CHECKING, Any, Generic, Self, TypeVar

from sqlitedata.exceptions import IntegrityViolationError, QueryError
from sqlitedata.parameters import QueryParameter, as_parameters
from sqlitedata.sql import BoundCommand, bind_parameters
from sqlitedata.types import convert_value

from libb import attrdict

if TYPE_CHECKING:
    from sqlitedata.connection import DatabaseHandle

logger = logging.getLogger(__name__)

__all__ = [
    'Command',
    'CommandBehavior',
    'Cursor',
    'RowStream',
]

T = TypeVar('T')


class CommandBehavior(enum.Enum):
    """Reader behaviour requested from `Command.execute_reader`."""
    DEFAULT = 'default'
    SINGLE_ROW = 'single_row'


def dumpsql(func):
    """Decorator for logging SQL, timing calls and translating engine errors."""
    @wraps(func)
    def wrapper(self, bound: BoundCommand, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{bound.sql}\nargs: {bound.args}')
        try:
            return func(self, bound, *args, **kwargs)
        except sqlite3.IntegrityError as err:
            logger.error(f'Constraint violation:\nSQL:\n{bound.sql}\nargs: {bound.args}')
            raise IntegrityViolationError(str(err), sql=bound.sql, parameters=bound.names) from err
        except sqlite3.Error as err:
            logger.error(f'Error with query:\nSQL:\n{bound.sql}\nargs: {bound.args}')
            raise QueryError(str(err), sql=bound.sql, parameters=bound.names) from err
        finally:
            elapsed = time.time() - start
            self.handle.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Cursor:
    """Forward-only reader over the rows produced by a command.

    The cursor doubles as the current record: after `read()` returns True,
    values of the current row are available by ordinal or column name.
    Iterating the cursor advances it and yields the cursor itself for each
    row, which is what row mappers receive.

    Examples
        with command.execute_reader() as cursor:
            while cursor.read():
                name = cursor.get_nullable_string('name')
    """

    def __init__(self, dbapi_cursor: sqlite3.Cursor, sql: str,
                 behavior: CommandBehavior = CommandBehavior.DEFAULT,
                 on_close: Callable[['Cursor'], None] | None = None) -> None:
        self.dbapi_cursor = dbapi_cursor
        self.sql = sql
        self.behavior = behavior
        self._on_close = on_close
        self._names = [d[0] for d in (dbapi_cursor.description or [])]
        self._ordinals = {name: i for i, name in enumerate(self._names)}
        self._row: tuple | None = None
        self._rows_read = 0
        self._done = False
        self._closed = False

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __iter__(self) -> Iterator[Self]:
        while self.read():
            yield self

    def __getitem__(self, key: int | str) -> Any:
        return self.get_value(key)

    def _check_open(self) -> None:
        if self._closed:
            raise QueryError('Cursor has been closed; results are no longer available',
                             sql=self.sql)

    def _current(self) -> tuple:
        self._check_open()
        if self._row is None:
            raise QueryError('Cursor is not positioned on a row', sql=self.sql)
        return self._row

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def field_count(self) -> int:
        return len(self._names)

    @property
    def rows_read(self) -> int:
        return self._rows_read

    @property
    def has_rows(self) -> bool:
        """Whether at least one row has been read."""
        return self._rows_read > 0

    def read(self) -> bool:
        """Advance to the next row. Returns False when no rows remain."""
        self._check_open()
        if self._done:
            return False
        if self.behavior is CommandBehavior.SINGLE_ROW and self._rows_read >= 1:
            self._finish()
            return False
        try:
            row = self.dbapi_cursor.fetchone()
        except sqlite3.Error as err:
            raise QueryError(str(err), sql=self.sql) from err
        if row is None:
            self._finish()
            return False
        self._row = tuple(row)
        self._rows_read += 1
        return True

    def _finish(self) -> None:
        self._row = None
        self._done = True

    def close(self) -> None:
        """Close the cursor, discarding unread rows."""
        if self._closed:
            return
        self._closed = True
        self._row = None
        try:
            self.dbapi_cursor.close()
        finally:
            if self._on_close is not None:
                self._on_close(self)
        logger.debug(f'Cursor closed after {self._rows_read} rows')

    def keys(self) -> list[str]:
        """Column names of the result set."""
        return list(self._names)

    def get_name(self, ordinal: int) -> str:
        return self._names[ordinal]

    def get_ordinal(self, name: str) -> int:
        """Column index by name; exact match first, then case-insensitive."""
        if name in self._ordinals:
            return self._ordinals[name]
        lowered = name.lower()
        for i, column in enumerate(self._names):
            if column.lower() == lowered:
                return i
        raise IndexError(f'No column named {name!r} in result set')

    def _index(self, key: int | str) -> int:
        if isinstance(key, str):
            return self.get_ordinal(key)
        return key

    def get_value(self, key: int | str) -> Any:
        """Raw value of a column in the current row."""
        return self._current()[self._index(key)]

    def values(self) -> tuple:
        return self._current()

    def to_dict(self) -> dict[str, Any]:
        return dict(zip(self._names, self._current()))

    def to_attrdict(self) -> attrdict:
        return attrdict(self.to_dict())

    def is_null(self, key: int | str) -> bool:
        return self.get_value(key) is None

    def get_value_or_default(self, key: int | str, target: Any = Any) -> Any:
        """Value converted to `target`, or the target's default when NULL."""
        return convert_value(self.get_value(key), target)

    def get_nullable_string(self, key: int | str) -> str | None:
        return self.get_value_or_default(key, str | None)

    def get_nullable_uuid(self, key: int | str) -> uuid.UUID | None:
        return self.get_value_or_default(key, uuid.UUID | None)

    def get_int_or_zero(self, key: int | str) -> int:
        return self.get_value_or_default(key, int)

    def get_nullable_int(self, key: int | str) -> int | None:
        return self.get_value_or_default(key, int | None)

    def get_decimal_or_zero(self, key: int | str) -> decimal.Decimal:
        return self.get_value_or_default(key, decimal.Decimal)

    def get_nullable_datetime(self, key: int | str) -> datetime.datetime | None:
        return self.get_value_or_default(key, datetime.datetime | None)


class RowStream(Generic[T]):
    """Lazy, single-pass sequence of materialized rows.

    The stream owns the database handle that produced it. The handle is
    released when the stream is exhausted, closed explicitly, used as a
    context manager, or when materialization raises. Iterating a closed
    stream raises `QueryError`; a stream that simply ran out raises
    StopIteration as usual.

    Examples
        with connector.select_many('select id, name from item', None, Item) as items:
            for item in items:
                ...
    """

    def __init__(self, source: Iterator[T], sql: str | None = None) -> None:
        self._source = source
        self.sql = sql
        self._closed = False
        self._exhausted = False

    def __iter__(self) -> Self:
        return self

    def __next__(self) -> T:
        if self._closed:
            raise QueryError('Result stream has been closed; its handle is released',
                             sql=self.sql)
        if self._exhausted:
            raise StopIteration
        try:
            return next(self._source)
        except StopIteration:
            self._exhausted = True
            raise
        except Exception:
            self.close()
            raise

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Abandon the stream and release its handle."""
        if self._closed:
            return
        self._closed = True
        close = getattr(self._source, 'close', None)
        if close is not None:
            close()

    def to_list(self) -> list[T]:
        """Consume the remaining rows into a list and release the handle."""
        with self:
            return list(self)

    def first(self, default: Any = None) -> T | Any:
        """Return the first remaining value, releasing the handle."""
        with self:
            return next(self, default)


class Command:
    """SQL command bound to an open database handle.

    Parameters are collected with `add_parameter` and bound when the command
    executes, so collection expansion happens once per execution.
    """

    def __init__(self, handle: 'DatabaseHandle', text: str = '',
                 parameters: Iterable[QueryParameter] | Mapping[str, Any] | None = None) -> None:
        self.handle = handle
        self.text = text
        self.parameters: list[QueryParameter] = list(as_parameters(parameters))

    def set_text(self, text: str) -> None:
        self.text = text

    def add_parameter(self, name: str | QueryParameter, value: Any = None) -> QueryParameter:
        """Attach a parameter by name and value, or an existing QueryParameter."""
        parameter = name if isinstance(name, QueryParameter) else QueryParameter(name, value)
        self.parameters.append(parameter)
        return parameter

    def bind(self) -> BoundCommand:
        return bind_parameters(self.text, self.parameters)

    @dumpsql
    def _execute(self, bound: BoundCommand) -> sqlite3.Cursor:
        cursor = self.handle.dbapi_connection.cursor()
        try:
            cursor.execute(bound.sql, bound.args)
        except Exception:
            cursor.close()
            raise
        return cursor

    def execute_nonquery(self) -> int:
        """Execute the command and return the affected row count."""
        bound = self.bind()
        cursor = self._execute(bound)
        try:
            rowcount = cursor.rowcount
        finally:
            cursor.close()
        logger.debug(f'Executed command with {len(bound.args)} parameters, {rowcount} rows affected')
        if not self.handle.in_transaction:
            self.handle.commit()
        return rowcount

    def execute_reader(self, behavior: CommandBehavior = CommandBehavior.DEFAULT) -> Cursor:
        """Execute the command and return a cursor over its rows."""
        bound = self.bind()
        cursor = self._execute(bound)
        return self.handle.register_cursor(Cursor(cursor, bound.sql, behavior))

    def execute_scalar(self) -> Any:
        """First column of the first row, or None when there are no rows."""
        with self.execute_reader(CommandBehavior.SINGLE_ROW) as cursor:
            if cursor.read() and cursor.field_count:
                return cursor[0]
            return None
