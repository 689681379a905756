"""
SQLite database fixtures.

Each test gets its own database file under pytest's tmp_path, so tests never
share state and every handle is a fresh connection to that file.
"""
import sqlitedata as db
import pytest

ITEM_SCHEMA = """
CREATE TABLE Item (
    ID INTEGER PRIMARY KEY,
    Name TEXT NOT NULL UNIQUE,
    Price NUMERIC,
    Quantity INTEGER,
    Uid TEXT,
    Created TEXT,
    Kind INTEGER,
    Active INTEGER,
    Tag INTEGER
)
"""

ITEM_ROWS = """
INSERT INTO Item (ID, Name, Price, Quantity, Uid, Created, Kind, Active, Tag) VALUES
(7, 'Widget', 9.99, 3, '12345678-1234-5678-1234-567812345678', '2024-05-01 12:30:00', 1, 1, 1),
(8, 'Gadget', 10, NULL, NULL, NULL, 2, 0, 2),
(9, 'Sprocket', 0.5, 12, NULL, '2024-05-02T08:00:00', 2, 1, 3)
"""


@pytest.fixture
def sqlite_path(tmp_path):
    """Path of an empty database file for this test."""
    return str(tmp_path / 'test.db')


@pytest.fixture
def sqlite_conn(sqlite_path):
    """Connector over a file database holding the Item table with three rows."""
    cn = db.connect({'database': sqlite_path})

    db.execute(cn, ITEM_SCHEMA)
    db.execute(cn, ITEM_ROWS)

    yield cn


@pytest.fixture
def sqlite_memory_conn():
    """Connector over an in-memory database holding the Item table."""
    cn = db.connect({'database': ':memory:'})

    db.execute(cn, ITEM_SCHEMA)
    db.execute(cn, ITEM_ROWS)

    yield cn
