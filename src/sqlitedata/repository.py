"""
Repository base classes.

`Repository` gives subclasses short helpers over a `Connector` for their own
hand-written queries. `DataRepository[T]` adds table-per-entity CRUD derived
from the entity's writable fields:

    class ItemRepository(DataRepository[Item]):
        __tablename__ = 'Item'

        def on_after_select_entity(self, item):
            item.name = item.name.strip()

    repo = ItemRepository({'database': 'app.db'})
    repo.insert(Item(id=7, name='Widget'))
    repo.get_by_id(7)
"""
import logging
import typing
from collections.abc import Iterable
from typing import Any, Generic, TypeVar

from sqlitedata.connector import Connector, Parameters, connect
from sqlitedata.cursor import RowStream
from sqlitedata.exceptions import ValidationError
from sqlitedata.options import DatabaseOptions
from sqlitedata.parameters import PreparedCommand, QueryParameter, single
from sqlitedata.row import Entity, entity_map
from sqlitedata.sql import quote_identifier

logger = logging.getLogger(__name__)

__all__ = [
    'Repository',
    'DataRepository',
]

TEntity = TypeVar('TEntity')


class Repository:
    """Base for repositories issuing their own queries.

    Accepts a `Connector`, a `DatabaseOptions`, or anything `connect` accepts.
    """

    def __init__(self, connector: Connector | DatabaseOptions | dict[str, Any]) -> None:
        if isinstance(connector, Connector):
            self.connector = connector
        else:
            self.connector = connect(connector)

    def get(self, sql: str, parameters: Parameters = None, strategy: Any = None) -> Any:
        return self.connector.select_one(sql, parameters, strategy)

    def get_list(self, sql: str, parameters: Parameters = None, strategy: Any = None) -> list[Any]:
        return self.connector.select_list(sql, parameters, strategy)

    def execute(self, sql: str, parameters: Parameters = None) -> int:
        return self.connector.execute(sql, parameters)

    def execute_with_row_id(self, sql: str, parameters: Parameters = None) -> tuple[int, int]:
        return self.connector.execute_with_row_id(sql, parameters)

    def execute_batch(self, commands: Iterable[PreparedCommand]) -> int:
        return self.connector.execute_batch(commands)


class DataRepository(Repository, Generic[TEntity]):
    """CRUD over one table whose columns are the entity's fields.

    The entity type comes from the generic parameter of the subclass, or an
    explicit `entity_type` class attribute. The table name is `__tablename__`
    when set, otherwise the entity class name. Rows are keyed by `id_column`.

    Subclasses override the ``on_*`` hooks to act around inserts, selects
    and deletes; the hooks do nothing by default.
    """
    entity_type: type | None = None
    id_column: str = 'ID'

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get('entity_type') is not None:
            return
        for base in getattr(cls, '__orig_bases__', ()):
            if typing.get_origin(base) is DataRepository:
                (arg,) = typing.get_args(base)
                if isinstance(arg, type):
                    cls.entity_type = arg

    def __init__(self, connector: Connector | DatabaseOptions | dict[str, Any]) -> None:
        if self.entity_type is None:
            raise ValidationError(f'{type(self).__name__} does not declare an entity type')
        super().__init__(connector)
        self.mapping = entity_map(self.entity_type)

    @property
    def table_name(self) -> str:
        return getattr(self, '__tablename__', None) or self.entity_type.__name__

    def _columns(self) -> str:
        return ','.join(quote_identifier(name) for name in self.mapping.names)

    @property
    def select_query(self) -> str:
        return f'SELECT {self._columns()} FROM {quote_identifier(self.table_name)}'

    def _by_id(self) -> str:
        return f'{quote_identifier(self.id_column)}=:{self.id_column}'

    def on_before_insert(self, entity: TEntity) -> None:
        pass

    def on_after_insert(self, entity: TEntity) -> None:
        pass

    def on_after_select_entity(self, entity: TEntity) -> None:
        pass

    def on_before_delete(self, id: Any) -> None:
        pass

    def on_after_delete(self, id: Any) -> None:
        pass

    def insert(self, entity: TEntity) -> bool:
        """Insert one row from the entity's fields. Returns True when a row was written.
        """
        self.on_before_insert(entity)
        names = self.mapping.names
        placeholders = ','.join(f':{name}' for name in names)
        sql = f'INSERT INTO {quote_identifier(self.table_name)} ({self._columns()}) VALUES ({placeholders})'
        values = self.mapping.values(entity)
        rowcount = self.execute(sql, [QueryParameter(name, values[name]) for name in names])
        self.on_after_insert(entity)
        return rowcount > 0

    def all(self) -> RowStream:
        """Lazily stream every row of the table as entities.
        """
        return RowStream(self._select_all(), sql=self.select_query)

    def _select_all(self):
        with self.connector.select_many(self.select_query, None, Entity(self.entity_type)) as rows:
            for entity in rows:
                self.on_after_select_entity(entity)
                yield entity

    def get_by_id(self, id: Any) -> TEntity | None:
        """Entity with the given id, or None.
        """
        sql = f'{self.select_query} WHERE {self._by_id()}'
        entity = self.get(sql, single(self.id_column, id), Entity(self.entity_type))
        if entity is not None:
            self.on_after_select_entity(entity)
        return entity

    def delete(self, id: Any) -> int:
        """Delete the row with the given id and return the affected row count.
        """
        self.on_before_delete(id)
        rowcount = self.execute(f'DELETE FROM {quote_identifier(self.table_name)} WHERE {self._by_id()}',
                                single(self.id_column, id))
        self.on_after_delete(id)
        logger.debug(f'Deleted {rowcount} rows from {self.table_name} with {self.id_column}={id!r}')
        return rowcount
