"""
Transaction handling for database handles.
"""
import enum
import logging
import sqlite3
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, Self

from sqlitedata.exceptions import TransactionError
from sqlitedata.parameters import PreparedCommand, QueryParameter
from sqlitedata.row import Scalar, materialize, materialize_one

if TYPE_CHECKING:
    from sqlitedata.connection import DatabaseHandle

logger = logging.getLogger(__name__)

__all__ = [
    'Transaction',
    'TransactionState',
]

Parameters = Iterable[QueryParameter] | Mapping[str, Any] | None


class TransactionState(enum.Enum):
    IDLE = 'idle'
    OPEN = 'open'
    COMMITTED = 'committed'
    ROLLED_BACK = 'rolled_back'


class Transaction:
    """Context manager for running multiple commands in a transaction.

    A handle carries at most one transaction. The transaction moves from
    IDLE to OPEN on `begin()` and ends in COMMITTED or ROLLED_BACK; leaving
    the context manager commits on success and rolls back on error.

    Examples
        with handle.begin_transaction() as tx:
            tx.execute('delete from item where id=:ID', single('ID', 7))
            tx.execute('update stock set qty=0 where item=:ID', single('ID', 7))
    """

    def __init__(self, handle: 'DatabaseHandle') -> None:
        self.handle = handle
        self.state = TransactionState.IDLE

    def __enter__(self) -> Self:
        if self.state is TransactionState.IDLE:
            self.begin()
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        if not self.is_active:
            return
        if exc_type is None:
            self.commit()
            return
        logger.warning('Rolling back the current transaction')
        try:
            self.rollback()
        except TransactionError as err:
            logger.error(f'Rollback failed while handling {exc_type.__name__}: {err}')

    @property
    def is_active(self) -> bool:
        return self.state is TransactionState.OPEN

    def _raw(self):
        if not self.handle.is_open:
            raise TransactionError('Transaction handle is not open')
        return self.handle.dbapi_connection

    def begin(self) -> Self:
        """Start the transaction on the handle.

        Raises
            TransactionError: If the handle already has an open transaction
        """
        if self.state is not TransactionState.IDLE:
            raise TransactionError(f'Transaction cannot begin from state {self.state.value}')
        if self.handle.in_transaction:
            raise TransactionError('Nested transactions are not supported')

        raw = self._raw()
        try:
            raw.execute('BEGIN')
        except sqlite3.Error as err:
            raise TransactionError(f'Could not begin transaction: {err}') from err

        self.state = TransactionState.OPEN
        self.handle.transaction = self
        logger.debug(f'Started transaction for handle {id(self.handle)}')
        return self

    def commit(self) -> None:
        """Make the transaction's effects durable.

        Raises
            TransactionError: If the transaction is not open or the commit fails;
            a failed commit is rolled back
        """
        if not self.is_active:
            raise TransactionError(f'Cannot commit a transaction in state {self.state.value}')
        try:
            self._raw().commit()
        except sqlite3.Error as err:
            logger.error(f'Commit failed, rolling back: {err}')
            self._abandon()
            raise TransactionError(f'Commit failed: {err}') from err
        self._finish(TransactionState.COMMITTED)
        logger.debug(f'Committed transaction for handle {id(self.handle)}')

    def rollback(self) -> None:
        """Discard the transaction's effects.

        Raises
            TransactionError: If the transaction is not open or the rollback fails
        """
        if not self.is_active:
            raise TransactionError(f'Cannot roll back a transaction in state {self.state.value}')
        try:
            self._raw().rollback()
        except sqlite3.Error as err:
            self._finish(TransactionState.ROLLED_BACK)
            raise TransactionError(f'Rollback failed: {err}') from err
        self._finish(TransactionState.ROLLED_BACK)
        logger.debug(f'Rolled back transaction for handle {id(self.handle)}')

    def _abandon(self) -> None:
        try:
            self._raw().rollback()
        except sqlite3.Error as err:
            logger.error(f'Rollback after failed commit also failed: {err}')
        finally:
            self._finish(TransactionState.ROLLED_BACK)

    def _finish(self, state: TransactionState) -> None:
        self.state = state
        if self.handle.transaction is self:
            self.handle.transaction = None

    def _require_active(self) -> None:
        if not self.is_active:
            raise TransactionError(f'Transaction is {self.state.value}, not open')

    def execute(self, sql: str, parameters: Parameters = None) -> int:
        """Execute SQL within transaction context"""
        self._require_active()
        return self.handle.create_command(sql, parameters).execute_nonquery()

    def execute_with_row_id(self, sql: str, parameters: Parameters = None) -> tuple[int, int]:
        """Execute an insert and return its row count and the assigned row id.
        """
        rowcount = self.execute(sql, parameters)
        return rowcount, self.handle.last_insert_rowid()

    def execute_prepared(self, command: PreparedCommand) -> int:
        return self.execute(command.command_text, command.parameters)

    def select_one(self, sql: str, parameters: Parameters = None, strategy: Any = None) -> Any:
        """Execute a query and materialize its first row, or the strategy default.
        """
        self._require_active()
        strategy = strategy if strategy is not None else Scalar()
        with self.handle.create_command(sql, parameters).execute_reader() as cursor:
            return materialize_one(cursor, strategy)

    def select_list(self, sql: str, parameters: Parameters = None, strategy: Any = None) -> list[Any]:
        """Execute a query and materialize all rows into a list.
        """
        self._require_active()
        strategy = strategy if strategy is not None else Scalar()
        with self.handle.create_command(sql, parameters).execute_reader() as cursor:
            return list(materialize(cursor, strategy))
