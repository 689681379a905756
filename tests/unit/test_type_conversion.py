"""Tests for converting raw SQLite values to requested Python types."""
import datetime
import decimal
import enum
import uuid
from typing import Any, Optional

import numpy as np
import pytest
from sqlitedata.exceptions import TypeConversionError
from sqlitedata.types import TypeConverter, convert_value, is_nilable
from sqlitedata.types import is_scalar_type, unwrap_optional, zero_value


class Status(enum.Enum):
    ACTIVE = 1
    RETIRED = 2


class Grade(enum.Enum):
    LOW = 'low'
    HIGH = 'high'


GUID = uuid.UUID('12345678-1234-5678-1234-567812345678')


class TestZeroValues:
    """NULL converts to the zero value of the requested type."""

    @pytest.mark.parametrize(('target', 'expected'), [
        (int, 0),
        (float, 0.0),
        (bool, False),
        (str, ''),
        (bytes, b''),
        (decimal.Decimal, decimal.Decimal(0)),
        (np.int32, np.int32(0)),
        (np.float64, np.float64(0)),
        (uuid.UUID, None),
        (datetime.datetime, None),
        (datetime.date, None),
        (Status, None),
        (int | None, None),
        (Optional[str], None),
        (Any, None),
        (object, None),
    ], ids=lambda v: getattr(v, '__name__', str(v)))
    def test_null_gives_zero(self, target, expected):
        result = convert_value(None, target)
        assert result == expected
        assert type(result) is type(expected)

    def test_zero_value_matches_convert(self):
        for target in (int, str, bool, decimal.Decimal):
            assert zero_value(target) == convert_value(None, target)


class TestNilable:
    """Test detection of types that admit None."""

    @pytest.mark.parametrize(('target', 'expected'), [
        (int, False),
        (int | None, True),
        (Optional[uuid.UUID], True),
        (Any, True),
        (object, True),
        (str, False),
    ])
    def test_is_nilable(self, target, expected):
        assert is_nilable(target) is expected

    def test_unwrap_optional(self):
        assert unwrap_optional(int | None) == (int, True)
        assert unwrap_optional(int) == (int, False)
        assert unwrap_optional(int | str) == (Any, False)

    @pytest.mark.parametrize(('target', 'expected'), [
        (int, True),
        (str | None, True),
        (uuid.UUID, True),
        (Status, True),
        (np.int32, True),
        (dict, False),
        (list[int], False),
    ])
    def test_is_scalar_type(self, target, expected):
        assert is_scalar_type(target) is expected


class TestIdentifiers:
    """UUID targets parse text and 16-byte blobs."""

    def test_from_text(self):
        assert convert_value('12345678-1234-5678-1234-567812345678', uuid.UUID) == GUID

    def test_from_braced_text(self):
        assert convert_value('{12345678-1234-5678-1234-567812345678}', uuid.UUID) == GUID

    def test_from_blob(self):
        assert convert_value(GUID.bytes, uuid.UUID) == GUID

    def test_passthrough(self):
        assert convert_value(GUID, uuid.UUID | None) is GUID

    def test_invalid_text(self):
        with pytest.raises(TypeConversionError, match='UUID'):
            convert_value('not-a-guid', uuid.UUID)


class TestTemporal:
    """Date and time targets parse ISO-8601 text."""

    @pytest.mark.parametrize('raw', ['2024-05-01 12:30:00', '2024-05-01T12:30:00'],
                             ids=['space', 'T'])
    def test_datetime_separators(self, raw):
        assert convert_value(raw, datetime.datetime) == datetime.datetime(2024, 5, 1, 12, 30)

    def test_datetime_with_fraction_and_offset(self):
        result = convert_value('2024-05-01T12:30:00.250000+02:00', datetime.datetime)
        assert result.microsecond == 250000
        assert result.utcoffset() == datetime.timedelta(hours=2)

    def test_date_from_text(self):
        assert convert_value('2024-05-01', datetime.date) == datetime.date(2024, 5, 1)

    def test_date_from_datetime_text(self):
        assert convert_value('2024-05-01 12:30:00', datetime.date) == datetime.date(2024, 5, 1)

    def test_time_from_text(self):
        assert convert_value('12:30:15', datetime.time) == datetime.time(12, 30, 15)

    def test_datetime_passthrough(self):
        value = datetime.datetime(2024, 5, 1)
        assert convert_value(value, datetime.datetime | None) is value

    def test_date_widened_to_datetime(self):
        assert convert_value(datetime.date(2024, 5, 1), datetime.datetime) == datetime.datetime(2024, 5, 1)

    def test_invalid_text(self):
        with pytest.raises(TypeConversionError):
            convert_value('yesterday', datetime.datetime)


class TestEnums:
    """Enum targets look members up by value, then by name."""

    @pytest.mark.parametrize(('raw', 'expected'), [
        (1, Status.ACTIVE),
        (2, Status.RETIRED),
        (2.0, Status.RETIRED),
        ('1', Status.ACTIVE),
        ('RETIRED', Status.RETIRED),
    ])
    def test_int_enum(self, raw, expected):
        assert convert_value(raw, Status) is expected

    def test_text_valued_enum(self):
        assert convert_value('high', Grade) is Grade.HIGH
        assert convert_value('LOW', Grade) is Grade.LOW

    def test_unknown_member(self):
        with pytest.raises(TypeConversionError):
            convert_value(9, Status)


class TestChangeType:
    """Numeric, boolean and text conversions."""

    @pytest.mark.parametrize(('raw', 'expected'), [
        (7, 7),
        (2.5, 2),
        (3.5, 4),
        (-2.5, -2),
        ('42', 42),
        (' 42 ', 42),
        (True, 1),
        (decimal.Decimal('2.5'), 2),
    ], ids=['int', 'half_down', 'half_up', 'negative_half', 'text', 'padded', 'bool', 'decimal'])
    def test_int(self, raw, expected):
        result = convert_value(raw, int)
        assert result == expected
        assert type(result) is int

    @pytest.mark.parametrize(('raw', 'expected'), [
        (0, False),
        (1, True),
        (5, True),
        ('true', True),
        ('False', False),
        ('1', True),
        ('0', False),
    ])
    def test_bool(self, raw, expected):
        assert convert_value(raw, bool) is expected

    @pytest.mark.parametrize(('raw', 'expected'), [
        (10, decimal.Decimal(10)),
        (0.1, decimal.Decimal('0.1')),
        ('9.99', decimal.Decimal('9.99')),
    ])
    def test_decimal(self, raw, expected):
        assert convert_value(raw, decimal.Decimal) == expected

    def test_float(self):
        assert convert_value(3, float) == 3.0
        assert type(convert_value(3, float)) is float

    def test_str(self):
        assert convert_value(12, str) == '12'
        assert convert_value(b'abc', str) == 'abc'

    def test_bytes(self):
        assert convert_value('abc', bytes) == b'abc'
        assert convert_value(b'\x00', bytes) == b'\x00'

    def test_numpy_narrowing(self):
        result = convert_value(2**31 - 1, np.int32)
        assert result == 2**31 - 1
        assert isinstance(result, np.int32)

    def test_numpy_overflow(self):
        with pytest.raises(TypeConversionError, match='int32'):
            convert_value(2**40, np.int32)

    def test_numpy_float(self):
        assert isinstance(convert_value(1, np.float32), np.float32)

    def test_optional_target(self):
        assert convert_value('5', int | None) == 5

    @pytest.mark.parametrize(('raw', 'target'), [
        ('abc', int),
        ('abc', float),
        ('maybe', bool),
        ('abc', decimal.Decimal),
        (1.5, bytes),
        (b'x', datetime.timedelta),
    ], ids=['int', 'float', 'bool', 'decimal', 'bytes', 'unsupported'])
    def test_unsupported_raises(self, raw, target):
        with pytest.raises(TypeConversionError):
            convert_value(raw, target)

    def test_error_names_types(self):
        with pytest.raises(TypeConversionError) as exc_info:
            convert_value('abc', int)
        assert 'str' in str(exc_info.value)
        assert 'int' in str(exc_info.value)

    @pytest.mark.parametrize('target', [Any, object, None, list[int]])
    def test_passthrough_targets(self, target):
        value = [1, 2]
        assert convert_value(value, target) is value


class TestTypeConverter:
    """Python to SQLite parameter conversion."""

    @pytest.mark.parametrize(('value', 'expected'), [
        (True, 1),
        (Status.ACTIVE, 1),
        (np.int64(1), 1),
        (np.float64('nan'), None),
        (None, None),
        ('x', 'x'),
    ])
    def test_convert_value(self, value, expected):
        assert TypeConverter.convert_value(value) == expected
