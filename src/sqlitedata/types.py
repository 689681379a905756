"""
Consolidated type handling for SQLite values.

This module provides:
- TypeConverter: Convert Python values to SQLite-compatible parameter values
- convert_value: Convert raw column values to a requested Python type
- zero_value: Default value of a requested type when the column is NULL
- SQLite converters: dateutil-backed parsing of declared date/datetime columns

SQLite stores every value in one of five storage classes (NULL, INTEGER,
REAL, TEXT, BLOB). Integers always come back as 64-bit Python ints, booleans
as 0/1, identifiers and timestamps as text, and decimals as whatever the
column affinity produced, so reads need an explicit conversion step keyed off
the type the caller asked for.
"""
import datetime
import decimal
import enum
import logging
import math
import sqlite3
import types
import typing
import uuid
from typing import Any, Union

import dateutil.parser
import numpy as np
import pandas as pd
from sqlitedata.exceptions import TypeConversionError

logger = logging.getLogger(__name__)

__all__ = [
    'TypeConverter',
    'convert_value',
    'zero_value',
    'is_nilable',
    'unwrap_optional',
    'is_scalar_type',
    'convert_date',
    'convert_datetime',
    'AdapterRegistry',
]

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)
NUMPY_SCALAR_TYPES = (np.number, np.bool_)

TEMPORAL_TYPES = (datetime.datetime, datetime.date, datetime.time)
SCALAR_TYPES = (int, float, bool, str, bytes, decimal.Decimal, uuid.UUID, *TEMPORAL_TYPES)

_TRUE_STRINGS = {'true', '1'}
_FALSE_STRINGS = {'false', '0'}

_isoparser = dateutil.parser.isoparser()


# Type Converter - Handles Python -> SQLite value conversion

def _convert_numpy_value(val: Any) -> float | int | bool | datetime.datetime | None:
    """Convert NumPy value to Python type."""
    if val is None:
        return None

    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()

    if isinstance(val, (np.floating, np.integer | np.unsignedinteger, np.bool_)):
        return val.item()

    return val


class TypeConverter:
    """Parameter conversion for SQLite bindings.

    Handles NumPy and Pandas scalars and the Python types sqlite3 cannot
    bind natively.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a SQLite-compatible format."""
        if value is None:
            return None

        if isinstance(value, enum.Enum):
            value = value.value

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if isinstance(value, type(pd.NaT)):
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.bool_, np.datetime64)):
            value = _convert_numpy_value(value)
            if value is None:
                return None

        if pd.api.types.is_scalar(value) and pd.isna(value):
            return None

        if isinstance(value, bool):
            return int(value)

        if isinstance(value, uuid.UUID):
            return str(value)

        if isinstance(value, decimal.Decimal):
            return str(value)

        if isinstance(value, datetime.datetime):
            return value.isoformat(sep=' ')

        if isinstance(value, (datetime.date, datetime.time)):
            return value.isoformat()

        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)

        return value


# Type Resolution - requested annotation -> concrete type

def _is_class(target: Any) -> bool:
    """Plain class, excluding parameterized generics such as ``list[int]``."""
    return isinstance(target, type) and typing.get_origin(target) is None


def unwrap_optional(target: Any) -> tuple[Any, bool]:
    """Split ``X | None`` into ``(X, True)``.

    Unions of several non-None members resolve to ``Any``.
    """
    origin = typing.get_origin(target)
    if origin is Union or origin is types.UnionType:
        members = typing.get_args(target)
        non_null = [m for m in members if m is not type(None)]
        nilable = len(non_null) < len(members)
        if len(non_null) == 1:
            return non_null[0], nilable
        return Any, nilable
    return target, False


def is_nilable(target: Any) -> bool:
    """Check whether None is a valid value of the requested type."""
    base, nilable = unwrap_optional(target)
    return nilable or base in {Any, object, None}


def is_scalar_type(target: Any) -> bool:
    """Check whether the requested type is read from a single column.

    Entity classes are not scalar; they are populated column by column.
    """
    base, _ = unwrap_optional(target)
    if base is Any or base is object:
        return True
    if not _is_class(base):
        return False
    return issubclass(base, (*SCALAR_TYPES, enum.Enum, *NUMPY_SCALAR_TYPES))


def zero_value(target: Any) -> Any:
    """Return the default of a requested type for a NULL column.

    Nilable types give None; numbers give zero; strings and bytes give empty
    values; types without a natural zero give None.
    """
    base, nilable = unwrap_optional(target)
    if nilable or not _is_class(base) or base is object:
        return None
    if issubclass(base, enum.Enum):
        return None
    if issubclass(base, (int, float, str, bytes, decimal.Decimal, *NUMPY_SCALAR_TYPES)):
        return base()
    return None


# Conversions - raw SQLite value -> requested type

def _as_text(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw).decode()
    return raw


def _to_uuid(raw: Any) -> uuid.UUID | Any:
    if isinstance(raw, uuid.UUID):
        return raw
    if isinstance(raw, (bytes, bytearray, memoryview)) and len(raw) == 16:
        return uuid.UUID(bytes=bytes(raw))
    if isinstance(raw, str):
        return uuid.UUID(raw.strip())
    return raw


def _to_temporal(raw: Any, target: type) -> Any:
    raw = _as_text(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if target is datetime.time:
            try:
                return _isoparser.parse_isotime(text)
            except ValueError:
                return dateutil.parser.isoparse(text).time()
        parsed = dateutil.parser.isoparse(text)
        if target is datetime.date:
            return parsed.date()
        return parsed

    if target is datetime.date and isinstance(raw, datetime.datetime):
        return raw.date()
    if target is datetime.time and isinstance(raw, datetime.datetime):
        return raw.time()
    if (target is datetime.datetime and isinstance(raw, datetime.date)
            and not isinstance(raw, datetime.datetime)):
        return datetime.datetime.combine(raw, datetime.time())
    return raw


def _to_enum(raw: Any, target: type[enum.Enum]) -> enum.Enum:
    if isinstance(raw, target):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return target(text)
        except ValueError:
            pass
        if text.lstrip('-').isdigit():
            return target(int(text))
        try:
            return target[text]
        except KeyError as err:
            raise ValueError(f'{text!r} is not a valid {target.__name__}') from err
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    return target(raw)


def _to_int(raw: Any) -> int:
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        # round half to even
        return int(round(raw))
    if isinstance(raw, decimal.Decimal):
        return int(raw.to_integral_value(rounding=decimal.ROUND_HALF_EVEN))
    if isinstance(raw, str):
        return int(raw.strip())
    raise TypeError(f'cannot convert {type(raw).__name__} to int')


def _to_float(raw: Any) -> float:
    if isinstance(raw, (int, float, decimal.Decimal)):
        return float(raw)
    if isinstance(raw, str):
        return float(raw.strip())
    raise TypeError(f'cannot convert {type(raw).__name__} to float')


def _to_bool(raw: Any) -> bool:
    if isinstance(raw, (int, float, decimal.Decimal)):
        return bool(raw)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f'{raw!r} is not a boolean')
    raise TypeError(f'cannot convert {type(raw).__name__} to bool')


def _to_decimal(raw: Any) -> decimal.Decimal:
    if isinstance(raw, decimal.Decimal):
        return raw
    if isinstance(raw, bool):
        return decimal.Decimal(int(raw))
    if isinstance(raw, int):
        return decimal.Decimal(raw)
    if isinstance(raw, float):
        return decimal.Decimal(str(raw))
    if isinstance(raw, str):
        return decimal.Decimal(raw.strip())
    raise TypeError(f'cannot convert {type(raw).__name__} to Decimal')


def _to_str(raw: Any) -> str:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw).decode()
    return str(raw)


def _to_bytes(raw: Any) -> bytes:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw)
    if isinstance(raw, str):
        return raw.encode()
    raise TypeError(f'cannot convert {type(raw).__name__} to bytes')


def _to_numpy(raw: Any, target: type) -> Any:
    if issubclass(target, np.bool_):
        return target(_to_bool(raw))
    if issubclass(target, np.integer):
        value = _to_int(raw)
        info = np.iinfo(target)
        if not info.min <= value <= info.max:
            raise OverflowError(f'{value} out of range for {target.__name__}')
        return target(value)
    return target(_to_float(raw))


def _change_type(raw: Any, target: type) -> Any:
    """Widening/narrowing conversion between numeric, bool and text forms."""
    if issubclass(target, NUMPY_SCALAR_TYPES):
        return _to_numpy(raw, target)
    if issubclass(target, bool):
        return _to_bool(raw)
    if issubclass(target, int):
        value = _to_int(raw)
    elif issubclass(target, float):
        value = _to_float(raw)
    elif issubclass(target, decimal.Decimal):
        value = _to_decimal(raw)
    elif issubclass(target, str):
        value = _to_str(raw)
    elif issubclass(target, bytes):
        value = _to_bytes(raw)
    elif isinstance(raw, target):
        return raw
    else:
        raise TypeError(f'no conversion from {type(raw).__name__} to {target.__name__}')
    if type(value) is not target:
        return target(value)
    return value


def convert_value(raw: Any, target: Any) -> Any:
    """Convert a raw column value to the requested type.

    Rules, applied in order:
    1. NULL gives the zero value of the target (None for nilable targets)
    2. UUID targets parse canonical text or 16-byte blobs
    3. date/time targets parse ISO-8601 text
    4. Enum targets look members up by value, then by name
    5. Anything else is a numeric/bool/text change-type conversion

    Parameters
        raw: Value as returned by sqlite3
        target: Requested type, optionally ``X | None``

    Returns
        Converted value

    Raises
        TypeConversionError: If the raw value cannot represent the target type
    """
    if target is None or target is Any or target is object:
        return raw

    if raw is None:
        return zero_value(target)

    base, _ = unwrap_optional(target)
    if base is Any or base is object or not _is_class(base):
        return raw

    try:
        if issubclass(base, uuid.UUID):
            return _to_uuid(raw)
        if issubclass(base, TEMPORAL_TYPES):
            return _to_temporal(raw, base)
        if issubclass(base, enum.Enum):
            return _to_enum(raw, base)
        return _change_type(raw, base)
    except (ValueError, TypeError, ArithmeticError) as err:
        raise TypeConversionError(
            f'Cannot convert {type(raw).__name__} value {raw!r} to {base.__name__}: {err}'
        ) from err


# SQLite Adapters - Declared column converters

def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


class AdapterRegistry:
    """Registry for SQLite type converters."""

    def sqlite(self, connection: Any) -> None:
        """Register SQLite converters for declared date/datetime columns."""
        connection.execute('SELECT 1')
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        sqlite3.register_converter('timestamp', convert_datetime)
