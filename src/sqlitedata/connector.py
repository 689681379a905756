"""
Command execution against a SQLite database.

`Connector` is the entry point for application code. Every operation opens
its own `DatabaseHandle`, binds and executes one command (or one batch), and
releases the handle before returning. `select_many` is the exception: its
handle lives as long as the returned `RowStream`.

    cn = connect(database='app.db')
    item = cn.select_one('SELECT id, name FROM [Item] WHERE id=:ID', single('ID', 7), Item)
    for name in cn.select_many('SELECT name FROM [Item] WHERE tag IN (:tags)', params(tags=[1, 2]), str):
        ...
"""
import logging
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import fields
from typing import Any

from sqlalchemy.engine import Engine
from sqlitedata.connection import DatabaseHandle, get_engine_for_options
from sqlitedata.cursor import CommandBehavior, RowStream
from sqlitedata.options import DatabaseOptions
from sqlitedata.parameters import PreparedCommand, QueryParameter, params
from sqlitedata.row import Extractor, Scalar, as_strategy, materialize, materialize_one
from sqlitedata.transaction import Transaction

from libb import load_options

logger = logging.getLogger(__name__)

__all__ = [
    'Connector',
    'connect',
]

Parameters = Iterable[QueryParameter] | Mapping[str, Any] | None

TABLE_EXISTS_SQL = """
SELECT COUNT(*) FROM sqlite_master
WHERE type IN ('table', 'view') AND name = :name COLLATE NOCASE
"""

COLUMN_EXISTS_SQL = """
SELECT COUNT(*) FROM pragma_table_info(:table)
WHERE name = :column COLLATE NOCASE
"""


class Connector:
    """Executes commands against the database described by `options`.

    The connector holds no open connection between calls; it carries only
    the options and the engine they resolve to.
    """

    def __init__(self, options: DatabaseOptions, engine: Engine | None = None) -> None:
        self.options = options
        self.engine = engine or get_engine_for_options(options)

    def __repr__(self) -> str:
        return f'Connector(database={self.options.database!r})'

    def open(self) -> DatabaseHandle:
        """Open a new handle. The caller must close it.
        """
        return DatabaseHandle(self.options, self.engine).open()

    def check(self) -> bool:
        """Open and close a handle to verify the database is reachable.

        Raises
            ConnectionFailure: If the database cannot be opened
        """
        with self.open() as handle:
            handle.create_command('SELECT 1').execute_scalar()
        return True

    def execute(self, sql: str, parameters: Parameters = None) -> int:
        """Execute a non-query command and return the affected row count.
        """
        with self.open() as handle:
            return handle.create_command(sql, parameters).execute_nonquery()

    def execute_with_row_id(self, sql: str, parameters: Parameters = None) -> tuple[int, int]:
        """Execute an insert and return its row count and the row id SQLite assigned.

        The row id is read on the same handle as the insert.
        """
        with self.open() as handle:
            rowcount = handle.create_command(sql, parameters).execute_nonquery()
            rowid = handle.last_insert_rowid()
        logger.debug(f'Inserted {rowcount} rows, last row id {rowid}')
        return rowcount, rowid

    def execute_batch(self, commands: Iterable[PreparedCommand]) -> int:
        """Execute prepared commands in order inside one transaction.

        Either every command takes effect or none does. The first failure is
        logged, the transaction rolled back, and the failure re-raised unchanged.

        Returns
            Total affected row count

        Raises
            QueryError: From the first failing command
            TransactionError: If commit or rollback fails
        """
        commands = list(commands)
        total = 0
        with self.open() as handle:
            tx = handle.begin_transaction()
            try:
                for i, command in enumerate(commands):
                    total += tx.execute_prepared(command)
            except Exception as err:
                logger.error(f'Batch command {i + 1} of {len(commands)} failed, rolling back: {err}')
                tx.rollback()
                raise
            tx.commit()
        logger.debug(f'Batch of {len(commands)} commands committed, {total} rows affected')
        return total

    def select_one(self, sql: str, parameters: Parameters = None, strategy: Any = None) -> Any:
        """Materialize the first row with `strategy`, or its default when there are no rows.

        Parameters
            sql: Query text
            parameters: Bindings for the query
            strategy: Row strategy or shorthand accepted by `as_strategy`

        Returns
            The materialized value, or the strategy default
        """
        strategy = as_strategy(strategy)
        behavior = CommandBehavior.DEFAULT if isinstance(strategy, Extractor) else CommandBehavior.SINGLE_ROW
        with self.open() as handle:
            with handle.create_command(sql, parameters).execute_reader(behavior) as cursor:
                return materialize_one(cursor, strategy)

    def select_value(self, sql: str, parameters: Parameters = None, target: Any = Any) -> Any:
        """First column of the first row converted to `target`, or its default.
        """
        return self.select_one(sql, parameters, Scalar(target))

    def select_many(self, sql: str, parameters: Parameters = None, strategy: Any = None) -> RowStream:
        """Lazily materialize every row with `strategy`.

        The returned stream owns a handle until it is exhausted, closed, or
        fails. Binding and execution errors surface on first iteration.
        """
        strategy = as_strategy(strategy)
        return RowStream(self._stream(sql, parameters, strategy), sql=sql)

    def _stream(self, sql: str, parameters: Parameters, strategy: Any) -> Iterator[Any]:
        with self.open() as handle:
            with handle.create_command(sql, parameters).execute_reader() as cursor:
                yield from materialize(cursor, strategy)

    def select_list(self, sql: str, parameters: Parameters = None, strategy: Any = None) -> list[Any]:
        """Materialize every row into a list, releasing the handle before returning.
        """
        return self.select_many(sql, parameters, strategy).to_list()

    def table_exists(self, table: str) -> bool:
        """Check whether a table or view exists (case-insensitive).
        """
        return self.select_value(TABLE_EXISTS_SQL, params(name=table), int) > 0

    def column_exists(self, table: str, column: str) -> bool:
        """Check whether `table` has a column named `column` (case-insensitive).
        """
        return self.select_value(COLUMN_EXISTS_SQL, params(table=table, column=column), int) > 0

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Open a handle and a transaction for ad-hoc multi-statement work.

        Commits when the block completes, rolls back when it raises.

        Examples
            with cn.transaction() as tx:
                tx.execute('delete from item where id=:ID', single('ID', 7))
                tx.execute('delete from stock where item=:ID', single('ID', 7))
        """
        with self.open() as handle, handle.begin_transaction() as tx:
            yield tx


@load_options(cls=DatabaseOptions)
def connect(options: DatabaseOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> Connector:
    """Create a connector for a SQLite database

    Args:
        options: Can be:
                - DatabaseOptions object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        Connector for the database
    """
    if isinstance(options, DatabaseOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=DatabaseOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    return Connector(options)
