"""
Database handle management with SQLAlchemy.

This module provides:
1. The `DatabaseHandle` class, a scoped owner of one live sqlite3 connection
2. Engine creation and management through a thread-safe registry
3. The `check_connection` retry decorator for opening handles on a busy database

Every handle must be opened before use and closed on every exit path; using
it as a context manager guarantees that:

    with DatabaseHandle(options).open() as handle:
        handle.create_command('delete from item where id=:ID', single('ID', 7)).execute_nonquery()

Closing a handle closes any cursor still open on it and rolls back a
transaction that was never finished.
"""
import atexit
import logging
import sqlite3
import threading
import time
import weakref
from collections.abc import Callable, Iterable, Mapping
from functools import wraps
from typing import TYPE_CHECKING, Any, Self, TypeVar

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool, StaticPool
from sqlitedata.cursor import Command, Cursor
from sqlitedata.exceptions import ConnectionFailure, QueryError, TransactionError
from sqlitedata.exceptions import is_retryable_error
from sqlitedata.options import DatabaseOptions
from sqlitedata.parameters import QueryParameter
from sqlitedata.types import AdapterRegistry

if TYPE_CHECKING:
    from sqlitedata.transaction import Transaction

__all__ = [
    'DatabaseHandle',
    'check_connection',
    'configure_connection',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()
_memory_sessions: 'weakref.WeakKeyDictionary[Engine, weakref.WeakSet[DatabaseHandle]]' = weakref.WeakKeyDictionary()

LAST_INSERT_ROWID = 'SELECT last_insert_rowid()'


def create_url_from_options(options: DatabaseOptions,
                            url_creator: Callable[..., sa.URL] = sa.URL.create) -> sa.URL:
    """Convert DatabaseOptions to SQLAlchemy URL.
    """
    return url_creator(drivername='sqlite', database=options.database)


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 0.1, retry_backoff: float = 1.5,
                     retry_if: Callable[[BaseException], bool] = is_retryable_error,
                     sleep_func: Callable[[float], None] = time.sleep) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Retries the wrapped call while it raises an error that `retry_if` deems
    transient (a locked or busy database file). Other errors propagate
    immediately.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            tries = 0
            delay = retry_delay
            while True:
                try:
                    return f(*args, **kwargs)
                except (sqlite3.Error, sa.exc.DBAPIError) as err:
                    tries += 1
                    if not retry_if(err):
                        raise
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Database busy (attempt {tries}/{max_retries}): {err}')
                    sleep_func(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.

    File databases get a NullPool, so every handle is a fresh connection, and
    their engines are shared through the registry. An in-memory database lives
    only as long as its connection: each call creates a new engine holding one
    connection in a StaticPool, so every connector owns a separate database
    and all handles on that connector share its session.
    """
    if options.is_memory:
        return _create_engine(options, engine_factory, **kwargs)

    key = str(options)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.database}')
            return _engine_registry[key]

        engine = _create_engine(options, engine_factory, **kwargs)
        _engine_registry[key] = engine
        return engine


def _create_engine(options: DatabaseOptions, engine_factory: Callable[..., Engine],
                   **kwargs: Any) -> Engine:
    url = create_url_from_options(options)

    connect_args: dict[str, Any] = {'timeout': options.timeout}
    if options.detect_types:
        connect_args['detect_types'] = sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES

    engine_kwargs: dict[str, Any] = {'echo': False}
    if options.is_memory:
        connect_args['check_same_thread'] = False
        engine_kwargs['poolclass'] = StaticPool
    else:
        engine_kwargs['poolclass'] = NullPool
    engine_kwargs['connect_args'] = connect_args

    engine_kwargs.update(kwargs)

    engine = engine_factory(url, **engine_kwargs)
    logger.debug(f'Created new engine for {options.database}')
    return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


def configure_connection(handle: 'DatabaseHandle') -> None:
    """Apply per-connection settings to a freshly opened handle.
    """
    raw = handle.dbapi_connection
    if handle.options.foreign_keys:
        raw.execute('PRAGMA foreign_keys=ON')
    if handle.options.detect_types:
        AdapterRegistry().sqlite(raw)


class DatabaseHandle:
    """Scoped owner of one live SQLite connection.

    This class:
    1. Opens a DBAPI connection through a registered SQLAlchemy engine
    2. Creates commands and transactions bound to that connection
    3. Tracks open cursors and closes them when the handle closes
    4. Tracks query execution counts and timing
    """

    def __init__(self, options: DatabaseOptions, engine: Engine | None = None) -> None:
        self.options = options
        self.engine = engine
        self.sa_connection: sa.engine.Connection | None = None
        self.dbapi_connection: sqlite3.Connection | None = None
        self.transaction: 'Transaction | None' = None
        self.calls = 0
        self.time = 0
        self._cursors: weakref.WeakSet[Cursor] = weakref.WeakSet()

    def __enter__(self) -> Self:
        return self.open()

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        try:
            self.close()
        except ConnectionFailure:
            if exc_type is None:
                raise
            logger.error('Error closing handle while another error was propagating',
                         exc_info=True)

    @property
    def is_open(self) -> bool:
        return self.dbapi_connection is not None

    @property
    def in_transaction(self) -> bool:
        return self.transaction is not None and self.transaction.is_active

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def _connect(self) -> sa.engine.Connection:
        return self.engine.connect()

    def open(self) -> Self:
        """Open the handle. Opening an open handle is a no-op.

        Raises
            ConnectionFailure: If the database file cannot be opened
            TransactionError: If another handle on the same in-memory database
                has an open transaction
        """
        if self.is_open:
            return self
        if self.engine is None:
            self.engine = get_engine_for_options(self.options)

        shared = self._shared_handles()
        if shared is not None and any(h.in_transaction for h in list(shared)):
            raise TransactionError('In-memory database has an open transaction on another handle')

        connect = check_connection(max_retries=self.options.retry_attempts,
                                   retry_delay=self.options.retry_delay)(self._connect)
        try:
            self.sa_connection = connect()
            self.dbapi_connection = self.sa_connection.connection.driver_connection
            configure_connection(self)
        except (sqlite3.Error, sa.exc.SQLAlchemyError) as err:
            self._discard()
            raise ConnectionFailure(f'Could not open database {self.options.database!r}: {err}') from err

        if shared is not None:
            shared.add(self)
        logger.debug(f'Opened handle on {self.options.database}')
        return self

    def _discard(self) -> None:
        if self.sa_connection is not None:
            try:
                self.sa_connection.close()
            except sa.exc.SQLAlchemyError as err:
                logger.debug(f'Error discarding connection: {err}')
        self.sa_connection = None
        self.dbapi_connection = None

    def close(self) -> None:
        """Release the connection, closing cursors and rolling back an open transaction.

        Raises
            ConnectionFailure: If the connection cannot be released
        """
        if not self.is_open:
            return

        for cursor in list(self._cursors):
            cursor.close()

        try:
            if self.in_transaction:
                logger.warning('Handle closed with an open transaction, rolling back')
                self.transaction.rollback()
        except TransactionError as err:
            logger.error(f'Rollback on close failed: {err}')
        finally:
            try:
                self.sa_connection.close()
            except sa.exc.SQLAlchemyError as err:
                raise ConnectionFailure(f'Could not close database {self.options.database!r}: {err}') from err
            finally:
                self.sa_connection = None
                self.dbapi_connection = None
                self.transaction = None
                self._leave_session()

        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')

    def _shared_handles(self) -> 'weakref.WeakSet[DatabaseHandle] | None':
        """Open handles on this handle's in-memory database, or None for a file database.

        Handles on one in-memory engine share a single connection, so they see
        each other's uncommitted work.
        """
        if not self.options.is_memory:
            return None
        with _engine_registry_lock:
            return _memory_sessions.setdefault(self.engine, weakref.WeakSet())

    def _leave_session(self) -> None:
        if self.options.is_memory and self.engine is not None:
            with _engine_registry_lock:
                _memory_sessions.get(self.engine, weakref.WeakSet()).discard(self)

    def _require_open(self) -> None:
        if not self.is_open:
            raise ConnectionFailure('Database handle is not open')

    def commit(self) -> None:
        """Commit work done outside an explicit transaction.
        """
        self._require_open()
        try:
            self.dbapi_connection.commit()
        except sqlite3.Error as err:
            raise QueryError(f'Commit failed: {err}') from err

    def create_command(self, text: str = '',
                       parameters: Iterable[QueryParameter] | Mapping[str, Any] | None = None) -> Command:
        """Create a command bound to this handle.
        """
        self._require_open()
        return Command(self, text, parameters)

    def begin_transaction(self) -> 'Transaction':
        """Begin a transaction on this handle.

        Raises
            TransactionError: If a transaction is already open on the handle
                or, on an in-memory database, other handles are open
        """
        from sqlitedata.transaction import Transaction

        self._require_open()
        shared = self._shared_handles()
        if shared is not None and any(h is not self and h.is_open for h in list(shared)):
            raise TransactionError('Cannot begin a transaction while other handles share the in-memory database')
        return Transaction(self).begin()

    def last_insert_rowid(self) -> int:
        """Row id assigned by the most recent insert on this handle.
        """
        return self.create_command(LAST_INSERT_ROWID).execute_scalar()

    def register_cursor(self, cursor: Cursor) -> Cursor:
        """Track a cursor so it is closed with the handle.
        """
        cursor._on_close = self._release_cursor
        self._cursors.add(cursor)
        return cursor

    def _release_cursor(self, cursor: Cursor) -> None:
        self._cursors.discard(cursor)
        # statements with RETURNING open an implicit transaction
        if self.is_open and not self.in_transaction and self.dbapi_connection.in_transaction:
            self.commit()
