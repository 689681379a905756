"""
SQLite command execution and result materialization.

All query operations can be called either as:
- Module functions: db.select_one(cn, sql, parameters, Item)
- Connector methods: cn.select_one(sql, parameters, Item)

The module functions are facades over `Connector`.
"""
__version__ = '0.1.0'

from collections.abc import Iterable
from typing import Any

from sqlitedata.connection import DatabaseHandle
from sqlitedata.connector import Connector, Parameters, connect
from sqlitedata.cursor import CommandBehavior, Cursor, RowStream
from sqlitedata.exceptions import BindingError, ConnectionFailure, DatabaseError
from sqlitedata.exceptions import DbConnectionError, IntegrityError
from sqlitedata.exceptions import IntegrityViolationError, OperationalError
from sqlitedata.exceptions import ProgrammingError, QueryError, TransactionError
from sqlitedata.exceptions import TypeConversionError, ValidationError
from sqlitedata.extractors import dict_extractor, frame_extractor, grouped
from sqlitedata.options import DatabaseOptions
from sqlitedata.parameters import PreparedCommand, QueryParameter, params, single
from sqlitedata.repository import DataRepository, Repository
from sqlitedata.row import Entity, Extractor, Mapper, Scalar
from sqlitedata.transaction import Transaction
from sqlitedata.types import convert_value


def execute(cn: Connector, sql: str, parameters: Parameters = None) -> int:
    """Execute a command and return affected row count.
    """
    return cn.execute(sql, parameters)


delete = execute
insert = execute
update = execute


def execute_with_row_id(cn: Connector, sql: str, parameters: Parameters = None) -> tuple[int, int]:
    """Execute an insert and return affected row count and the assigned row id.
    """
    return cn.execute_with_row_id(sql, parameters)


def execute_batch(cn: Connector, commands: Iterable[PreparedCommand]) -> int:
    """Execute prepared commands in one transaction.
    """
    return cn.execute_batch(commands)


def select_one(cn: Connector, sql: str, parameters: Parameters = None, strategy: Any = None) -> Any:
    """Materialize the first row, or the strategy default when there are no rows.
    """
    return cn.select_one(sql, parameters, strategy)


def select_many(cn: Connector, sql: str, parameters: Parameters = None, strategy: Any = None) -> RowStream:
    """Lazily materialize every row.
    """
    return cn.select_many(sql, parameters, strategy)


def select_value(cn: Connector, sql: str, parameters: Parameters = None, target: Any = Any) -> Any:
    """First column of the first row converted to `target`.
    """
    return cn.select_value(sql, parameters, target)


def table_exists(cn: Connector, table: str) -> bool:
    return cn.table_exists(table)


def column_exists(cn: Connector, table: str, column: str) -> bool:
    return cn.column_exists(table, column)


def transaction(cn: Connector):
    """Context manager running several commands in one transaction.

    Examples
        with db.transaction(cn) as tx:
            tx.execute('delete from item where id=:ID', db.single('ID', 7))
    """
    return cn.transaction()


__all__ = [
    'connect',
    'Connector',
    'DatabaseHandle',
    'DatabaseOptions',
    'transaction',
    'Transaction',
    'execute',
    'delete',
    'insert',
    'update',
    'execute_with_row_id',
    'execute_batch',
    'select_one',
    'select_many',
    'select_value',
    'table_exists',
    'column_exists',
    'QueryParameter',
    'PreparedCommand',
    'single',
    'params',
    'Scalar',
    'Entity',
    'Mapper',
    'Extractor',
    'dict_extractor',
    'frame_extractor',
    'grouped',
    'Cursor',
    'CommandBehavior',
    'RowStream',
    'Repository',
    'DataRepository',
    'convert_value',
    'IntegrityError',
    'ProgrammingError',
    'OperationalError',
    'DbConnectionError',
    'ConnectionFailure',
    'ValidationError',
    'DatabaseError',
    'BindingError',
    'IntegrityViolationError',
    'QueryError',
    'TransactionError',
    'TypeConversionError',
]
