"""
SQL parameter binding for SQLite commands.

Commands use named placeholders (``:name``, ``@name`` or ``$name``) and are
bound with a dict, which is what sqlite3 expects for named parameters:

    SQL + QueryParameters → Normalize values → Expand collections → BoundCommand

Collection-valued parameters support variable-length ``IN`` predicates:

    WHERE tag IN (:tags)   {tags: [1, 2, 3]}
    WHERE tag IN (:tags__0,:tags__1,:tags__2)   {tags__0: 1, tags__1: 2, tags__2: 3}

Expansion is a plain substring replacement of the placeholder token. A token
that is a prefix of another placeholder (``:tag`` inside ``:tags``) is
rewritten as well; a warning is logged when that is detected.

Main entry points:
- `bind_parameters(sql, parameters)` - Full binding pass producing a `BoundCommand`
- `expand_collection(sql, parameter, values, args)` - Single collection expansion
- `placeholder_names(sql)` - Named placeholders present in command text
- `quote_identifier(identifier)` - Quote table/column names
"""
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlitedata.exceptions import BindingError, ValidationError
from sqlitedata.parameters import QueryParameter, as_parameters
from sqlitedata.types import TypeConverter

from libb import isiterable

logger = logging.getLogger(__name__)

__all__ = [
    'BoundCommand',
    'bind_parameters',
    'expand_collection',
    'is_collection',
    'placeholder_names',
    'has_placeholders',
    'quote_identifier',
]

# Named placeholder token, not preceded by another name character or colon
_NAMED_PH = re.compile(r'(?<![\w:@$])([:@$][A-Za-z_]\w*)')

_SCALAR_TYPES = (str, bytes, bytearray, memoryview, Mapping)


@dataclass(slots=True)
class BoundCommand:
    """Command text and the dict of arguments ready for execution."""
    sql: str
    args: dict[str, Any]

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self.args)


def is_collection(value: Any) -> bool:
    """Check whether a parameter value should be expanded into several placeholders.

    Strings, byte sequences and mappings are scalars for binding purposes.
    """
    if value is None or isinstance(value, _SCALAR_TYPES):
        return False
    if hasattr(value, 'ndim') and getattr(value, 'ndim') == 0:
        return False
    return isiterable(value)


def placeholder_names(sql: str | None) -> list[str]:
    """Return named placeholder tokens in order of appearance.
    """
    if not sql:
        return []
    return _NAMED_PH.findall(sql)


def has_placeholders(sql: str | None) -> bool:
    """Check if SQL has any named parameter placeholders.
    """
    return bool(placeholder_names(sql))


def _warn_on_prefix_collision(sql: str, token: str) -> None:
    """Log when a placeholder token is a prefix of a longer placeholder."""
    colliding = sorted({name for name in placeholder_names(sql)
                        if name != token and name.startswith(token)})
    if colliding:
        logger.warning(f'Placeholder {token} is a prefix of {colliding}; '
                       'collection expansion will rewrite those tokens too')


def expand_collection(sql: str, parameter: QueryParameter, values: Iterable[Any],
                      args: dict[str, Any]) -> str:
    """Expand one collection-valued parameter into numbered placeholders.

    Parameters
        sql: Command text containing the parameter's placeholder
        parameter: Parameter whose value is a collection
        values: The collection elements, in source order
        args: Argument dict that receives one entry per element

    Returns
        Rewritten command text

    Raises
        BindingError: If the placeholder does not appear in the command text
    """
    token = parameter.placeholder
    if token not in sql:
        raise BindingError(
            f'Placeholder {token} not found in command text for collection parameter',
            sql=sql, parameter=parameter.name)

    _warn_on_prefix_collision(sql, token)

    values = list(values)
    if not values:
        logger.debug(f'Empty collection for {token}, binding NULL')
        return sql.replace(token, 'NULL')

    prefix = token[0]
    keys = [f'{parameter.key}__{i}' for i in range(len(values))]
    for key, value in zip(keys, values):
        args[key] = TypeConverter.convert_value(value)

    expanded = ','.join(f'{prefix}{key}' for key in keys)
    logger.debug(f'Expanded {token} into {len(keys)} placeholders')
    return sql.replace(token, expanded)


def bind_parameters(sql: str, parameters: Iterable[QueryParameter] | Mapping[str, Any] | None
                    ) -> BoundCommand:
    """Bind parameters to command text.

    Parameters
        sql: Command text with named placeholders
        parameters: QueryParameter sequence, mapping of name to value, or None

    Returns
        BoundCommand with rewritten text and the argument dict

    Raises
        BindingError: If a collection parameter has no matching placeholder
    """
    args: dict[str, Any] = {}

    for parameter in as_parameters(parameters):
        if parameter.is_output:
            logger.debug(f'Output parameter {parameter.name} bound as input')

        value = parameter.value
        if is_collection(value):
            sql = expand_collection(sql, parameter, value, args)
        else:
            args[parameter.key] = TypeConverter.convert_value(value)

    return BoundCommand(sql, args)


def quote_identifier(identifier: str) -> str:
    """Safely quote database identifiers.

    Parameters
        identifier: Table or column name

    Returns
        Quoted identifier

    Raises
        ValidationError: If the identifier is empty
    """
    if not identifier:
        raise ValidationError('Identifier must not be empty')
    return '"' + identifier.replace('"', '""') + '"'
