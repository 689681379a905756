"""
Built-in whole-cursor extractors.

    dict_extractor   - every row as a libb attrdict
    frame_extractor  - the whole result set as one pandas DataFrame
    grouped(key)     - rows grouped by a column, one (key, [values]) pair per group
"""
import itertools
import logging
from collections.abc import Callable, Iterator
from typing import Any

import pandas as pd
from sqlitedata.cursor import Cursor
from sqlitedata.row import Extractor, Mapper

from libb import attrdict

logger = logging.getLogger(__name__)

__all__ = [
    'DictExtractor',
    'FrameExtractor',
    'GroupedExtractor',
    'dict_extractor',
    'frame_extractor',
    'grouped',
]


class DictExtractor:
    """Each row as an attrdict keyed by column name."""

    def extract(self, cursor: Cursor) -> Iterator[attrdict]:
        for row in cursor:
            yield row.to_attrdict()


class FrameExtractor:
    """The whole result set as a single DataFrame.

    An empty result still carries the column names.
    """

    def extract(self, cursor: Cursor) -> Iterator[pd.DataFrame]:
        columns = cursor.keys()
        data = [row.values() for row in cursor]
        logger.debug(f'Loaded {len(data)} rows into DataFrame')
        yield pd.DataFrame.from_records(data, columns=columns)


class GroupedExtractor:
    """Consecutive rows sharing a key column, as ``(key, [values])`` pairs.

    Rows must arrive ordered by the key, as with ``ORDER BY key``. Each row
    is mapped with `mapper` (default: attrdict of the row).
    """

    def __init__(self, key: str, mapper: Callable[[Cursor], Any] | None = None) -> None:
        self.key = key
        self.mapper = Mapper(mapper) if mapper is not None else Mapper(Cursor.to_attrdict)

    def extract(self, cursor: Cursor) -> Iterator[tuple[Any, list[Any]]]:
        rows = ((row.get_value(self.key), self.mapper(row)) for row in cursor)
        for key, group in itertools.groupby(rows, key=lambda pair: pair[0]):
            yield key, [value for _, value in group]


dict_extractor = Extractor(DictExtractor())
frame_extractor = Extractor(FrameExtractor())


def grouped(key: str, mapper: Callable[[Cursor], Any] | None = None) -> Extractor:
    """Extractor grouping ordered rows by `key`."""
    return Extractor(GroupedExtractor(key, mapper))
