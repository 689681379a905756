"""
Row materialization strategies.

Each call that reads rows selects exactly one strategy:

- `Scalar(type)`: first column of each row, converted to `type`
- `Entity(cls)`: one `cls` instance per row, columns matched to writable fields by name
- `Mapper(func)`: caller function called once per row with the positioned cursor
- `Extractor(func[, args])`: caller function given the whole open cursor

Strategies are plain frozen dataclasses dispatched with `isinstance`;
`as_strategy` turns the shorthand accepted by the connector (a type, a
callable, an object with `map`/`extract`) into one of them.

Every strategy runs while the cursor is open. Values are produced lazily by
`materialize`, so the cursor must stay open until the generator finishes.
"""
import dataclasses
import inspect
import logging
import typing
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, ClassVar, Protocol, runtime_checkable

from sqlitedata.cursor import Cursor
from sqlitedata.exceptions import TypeConversionError, ValidationError
from sqlitedata.types import convert_value, is_scalar_type, zero_value

logger = logging.getLogger(__name__)

__all__ = [
    'Scalar',
    'Entity',
    'Mapper',
    'Extractor',
    'RowMapper',
    'DataExtractor',
    'EntityMap',
    'entity_map',
    'as_strategy',
    'materialize',
    'materialize_one',
    'default_for',
]

_MISSING = object()


@runtime_checkable
class RowMapper(Protocol):
    """Object mapping the current row of a cursor to a value."""

    def map(self, cursor: Cursor) -> Any: ...


@runtime_checkable
class DataExtractor(Protocol):
    """Object producing values from a whole open cursor."""

    def extract(self, cursor: Cursor, *args: Any) -> Iterable[Any]: ...


@dataclass(frozen=True)
class Scalar:
    type: Any = Any


@dataclass(frozen=True)
class Entity:
    cls: type


@dataclass(frozen=True)
class Mapper:
    func: Callable[[Cursor], Any] | RowMapper

    def __call__(self, cursor: Cursor) -> Any:
        if isinstance(self.func, RowMapper):
            return self.func.map(cursor)
        return self.func(cursor)


@dataclass(frozen=True)
class Extractor:
    """Whole-cursor strategy; `args` is passed through as caller context when given."""
    func: Callable[..., Iterable[Any]] | DataExtractor
    args: Any = _MISSING

    @property
    def has_args(self) -> bool:
        return self.args is not _MISSING

    def __call__(self, cursor: Cursor) -> Iterable[Any]:
        func = self.func.extract if isinstance(self.func, DataExtractor) else self.func
        if self.has_args:
            return func(cursor, self.args)
        return func(cursor)


Strategy = Scalar | Entity | Mapper | Extractor


def as_strategy(strategy: Any) -> Strategy:
    """Normalize the strategy shorthand accepted by select calls.

    - None: `Scalar()` with the raw first column
    - a scalar type or ``X | None``: `Scalar(type)`
    - a dict type: one mapping per row
    - any other class: `Entity(cls)`
    - an object with `extract`: `Extractor(obj)`
    - an object with `map`, or any other callable: `Mapper(obj)`

    Raises
        ValidationError: If the value cannot be used as a strategy
    """
    if isinstance(strategy, (Scalar, Entity, Mapper, Extractor)):
        return strategy
    if strategy is None:
        return Scalar()
    if isinstance(strategy, type):
        if issubclass(strategy, dict):
            return Mapper(lambda cursor, _cls=strategy: _cls(cursor.to_dict()))
        if is_scalar_type(strategy):
            return Scalar(strategy)
        return Entity(strategy)
    if is_scalar_type(strategy):
        return Scalar(strategy)
    if isinstance(strategy, DataExtractor):
        return Extractor(strategy)
    if isinstance(strategy, RowMapper) or callable(strategy):
        return Mapper(strategy)
    raise ValidationError(f'Cannot use {strategy!r} as a row strategy')


def default_for(strategy: Any) -> Any:
    """Value returned by single-row calls when the query produced no rows.
    """
    strategy = as_strategy(strategy)
    if isinstance(strategy, Scalar):
        return zero_value(strategy.type)
    return None


@dataclass(frozen=True)
class FieldSlot:
    """Writable field of an entity class."""
    name: str
    type: Any
    init: bool = True


class EntityMap:
    """Column-name to writable-field table for one entity class.

    Built once per class from its type hints. Writable fields are:
    1. dataclass fields
    2. annotated class attributes (``ClassVar`` and private names excluded)
    3. properties with a setter, typed by the getter's return annotation

    A class that provides ``field_names()`` and ``set_field(name, value)`` is
    populated through those methods instead of attribute assignment.
    """

    def __init__(self, cls: type) -> None:
        if not isinstance(cls, type):
            raise ValidationError(f'Entity strategy needs a class, got {cls!r}')
        self.cls = cls
        self.is_dataclass = dataclasses.is_dataclass(cls)
        self.uses_capability = callable(getattr(cls, 'field_names', None)) \
            and callable(getattr(cls, 'set_field', None))
        hints = self._type_hints(cls)
        self.slots = self._collect(cls, hints)
        self._by_name = {slot.name: slot for slot in self.slots}
        self._by_lower = {}
        for slot in self.slots:
            self._by_lower.setdefault(slot.name.lower(), slot)
        logger.debug(f'Entity map for {cls.__name__}: {[s.name for s in self.slots]}')

    @staticmethod
    def _type_hints(obj: Any) -> dict[str, Any]:
        try:
            return typing.get_type_hints(obj)
        except (NameError, TypeError) as err:
            logger.debug(f'Unresolved annotations on {obj.__qualname__}, reading raw: {err}')
            hints = {}
            for klass in reversed(getattr(obj, '__mro__', (obj,))):
                hints.update(getattr(klass, '__annotations__', {}))
            return {name: (Any if isinstance(hint, str) else hint) for name, hint in hints.items()}

    def _collect(self, cls: type, hints: dict[str, Any]) -> list[FieldSlot]:
        if self.uses_capability:
            names = self._capability_names(cls)
            return [FieldSlot(name, hints.get(name, Any), init=False) for name in names]

        slots: list[FieldSlot] = []
        if self.is_dataclass:
            for f in dataclasses.fields(cls):
                slots.append(FieldSlot(f.name, hints.get(f.name, Any), init=f.init))
        else:
            for name, hint in hints.items():
                if name.startswith('_') or typing.get_origin(hint) is ClassVar or hint is ClassVar:
                    continue
                slots.append(FieldSlot(name, hint, init=False))

        seen = {slot.name for slot in slots}
        for name in dir(cls):
            prop = getattr(cls, name, None)
            if name.startswith('_') or name in seen or not isinstance(prop, property):
                continue
            if prop.fset is None:
                continue
            returns = self._type_hints(prop.fget).get('return', Any) if prop.fget else Any
            slots.append(FieldSlot(name, returns, init=False))
        return slots

    @staticmethod
    def _capability_names(cls: type) -> list[str]:
        field_names = inspect.getattr_static(cls, 'field_names')
        if isinstance(field_names, (classmethod, staticmethod)):
            return list(cls.field_names())
        return list(EntityMap._construct(cls).field_names())

    @staticmethod
    def _construct(cls: type, **kwargs: Any) -> Any:
        try:
            return cls(**kwargs)
        except TypeError as err:
            raise ValidationError(f'Cannot construct {cls.__name__} for row materialization: {err}') from err

    @property
    def names(self) -> list[str]:
        return [slot.name for slot in self.slots]

    def find(self, column: str) -> FieldSlot | None:
        """Field for a column name; exact match first, then case-insensitive."""
        slot = self._by_name.get(column)
        if slot is None:
            slot = self._by_lower.get(column.lower())
        return slot

    def plan(self, columns: list[str]) -> list[tuple[int, FieldSlot]]:
        """Match result columns to fields once per cursor. Unmatched columns are ignored."""
        plan = []
        taken = set()
        unmapped = []
        for ordinal, column in enumerate(columns):
            slot = self.find(column)
            if slot is None or slot.name in taken:
                unmapped.append(column)
                continue
            taken.add(slot.name)
            plan.append((ordinal, slot))
        if unmapped:
            logger.debug(f'{self.cls.__name__}: columns {unmapped} do not map to a writable field')
        return plan

    def _convert(self, cursor: Cursor, ordinal: int, slot: FieldSlot) -> Any:
        raw = cursor.get_value(ordinal)
        try:
            return convert_value(raw, slot.type)
        except TypeConversionError as err:
            raise TypeConversionError(
                f'{self.cls.__name__}.{slot.name} from column {cursor.get_name(ordinal)!r}: {err}'
            ) from err

    def create(self, cursor: Cursor, plan: list[tuple[int, FieldSlot]]) -> Any:
        """Build one entity from the row the cursor is positioned on."""
        values = [(slot, self._convert(cursor, ordinal, slot)) for ordinal, slot in plan]

        if self.uses_capability:
            entity = self._construct(self.cls)
            for slot, value in values:
                entity.set_field(slot.name, value)
            return entity

        if self.is_dataclass:
            kwargs = {slot.name: value for slot, value in values if slot.init}
            for f in dataclasses.fields(self.cls):
                if not f.init or f.name in kwargs:
                    continue
                if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                    kwargs[f.name] = zero_value(self._by_name[f.name].type)
            entity = self._construct(self.cls, **kwargs)
            for slot, value in values:
                if not slot.init:
                    object.__setattr__(entity, slot.name, value)
            return entity

        entity = self._construct(self.cls)
        for slot, value in values:
            setattr(entity, slot.name, value)
        return entity

    def values(self, entity: Any) -> dict[str, Any]:
        """Current field values of an entity, keyed by field name."""
        return {name: getattr(entity, name, None) for name in self.names}


@lru_cache(maxsize=None)
def entity_map(cls: type) -> EntityMap:
    """Cached `EntityMap` for a class."""
    return EntityMap(cls)


def materialize(cursor: Cursor, strategy: Any) -> Iterator[Any]:
    """Lazily produce values from an open cursor with the given strategy.
    """
    strategy = as_strategy(strategy)

    if isinstance(strategy, Scalar):
        for row in cursor:
            yield convert_value(row.get_value(0), strategy.type)
    elif isinstance(strategy, Entity):
        mapping = entity_map(strategy.cls)
        plan = mapping.plan(cursor.keys())
        for row in cursor:
            yield mapping.create(row, plan)
    elif isinstance(strategy, Mapper):
        for row in cursor:
            yield strategy(row)
    else:
        result = strategy(cursor)
        if result is not None:
            yield from result


def materialize_one(cursor: Cursor, strategy: Any) -> Any:
    """First value from an open cursor, or the strategy default when there is none.

    Remaining rows are discarded with the cursor.
    """
    rows = materialize(cursor, strategy)
    try:
        return next(rows, default_for(strategy))
    finally:
        rows.close()
