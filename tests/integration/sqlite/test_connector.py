"""
Integration tests for command execution and row materialization with SQLite.
"""
import datetime
import decimal
import sqlite3
import uuid

import pandas as pd
import pytest
import sqlitedata as db
from sqlitedata import Entity, Extractor, params, single
from sqlitedata.transaction import TransactionState
from tests.fixtures.entities import Item, ItemKind, Widget


class TestSelect:
    """Test single-row and scalar selects."""

    def test_select_entity_by_id(self, sqlite_conn):
        """Test the Item query with ID=7 yields the Widget row."""
        widget = db.select_one(sqlite_conn, 'SELECT id, name FROM [Item] WHERE id=:ID',
                               single('ID', 7), Widget)

        assert widget == Widget(id=7, name='Widget')

    def test_select_full_entity(self, sqlite_conn):
        item = sqlite_conn.select_one('SELECT * FROM Item WHERE ID=:ID', single('ID', 7), Item)

        assert item.Name == 'Widget'
        assert item.Price == decimal.Decimal('9.99')
        assert item.Quantity == 3
        assert item.Uid == uuid.UUID('12345678-1234-5678-1234-567812345678')
        assert item.Created == datetime.datetime(2024, 5, 1, 12, 30)
        assert item.Kind is ItemKind.TOOL
        assert item.Active is True

    def test_nulls_map_to_nilable_fields(self, sqlite_conn):
        item = sqlite_conn.select_one('SELECT * FROM Item WHERE ID=:ID', single('ID', 8), Item)

        assert item.Quantity is None
        assert item.Uid is None
        assert item.Created is None
        assert item.Price == decimal.Decimal(10)

    @pytest.mark.parametrize(('strategy', 'expected'), [
        (int, 0),
        (str, ''),
        (int | None, None),
        (Item, None),
        (Widget, None),
        (None, None),
    ])
    def test_no_rows_gives_default(self, sqlite_conn, strategy, expected):
        """Test that zero rows return the default of the requested type, not an error."""
        result = sqlite_conn.select_one('SELECT ID FROM Item WHERE ID=:ID', single('ID', 404), strategy)
        assert result == expected

    def test_select_value(self, sqlite_conn):
        assert db.select_value(sqlite_conn, 'SELECT COUNT(*) FROM Item') == 3
        assert sqlite_conn.select_value('SELECT Price FROM Item WHERE ID=:ID', single('ID', 9),
                                        decimal.Decimal) == decimal.Decimal('0.5')

    def test_select_value_created_text(self, sqlite_conn):
        created = sqlite_conn.select_value('SELECT Created FROM Item WHERE ID=9', None, datetime.datetime)
        assert created == datetime.datetime(2024, 5, 2, 8, 0)

    def test_select_one_mapper(self, sqlite_conn):
        name = sqlite_conn.select_one('SELECT Name FROM Item WHERE ID=7', None,
                                      lambda row: row.get_nullable_string('Name').upper())
        assert name == 'WIDGET'

    def test_select_one_first_row_only(self, sqlite_conn):
        widget = sqlite_conn.select_one('SELECT ID, Name FROM Item ORDER BY ID DESC', None, Widget)
        assert widget == Widget(id=9, name='Sprocket')


class TestSelectMany:
    """Test multi-row selects and collection parameters."""

    def test_in_clause(self, sqlite_conn):
        names = sqlite_conn.select_many('SELECT Name FROM Item WHERE Tag IN (:tags) ORDER BY ID',
                                        params(tags=[1, 3]), str).to_list()
        assert names == ['Widget', 'Sprocket']

    def test_in_clause_with_other_parameters(self, sqlite_conn):
        ids = sqlite_conn.select_list('SELECT ID FROM Item WHERE Tag IN (:tags) AND Kind=:Kind ORDER BY ID',
                                      params(tags=(1, 2, 3), Kind=ItemKind.PART), int)
        assert ids == [8, 9]

    def test_empty_in_clause_matches_nothing(self, sqlite_conn):
        assert sqlite_conn.select_list('SELECT ID FROM Item WHERE Tag IN (:tags)', params(tags=[]), int) == []

    def test_entities(self, sqlite_conn):
        items = list(db.select_many(sqlite_conn, 'SELECT * FROM Item ORDER BY ID', None, Item))

        assert [i.ID for i in items] == [7, 8, 9]
        assert [i.Kind for i in items] == [ItemKind.TOOL, ItemKind.PART, ItemKind.PART]

    def test_dict_rows(self, sqlite_conn):
        rows = sqlite_conn.select_list('SELECT ID, Name FROM Item WHERE ID=:ID', single('ID', 8), db.dict_extractor)
        assert rows == [{'ID': 8, 'Name': 'Gadget'}]
        assert rows[0].Name == 'Gadget'

    def test_frame_extractor(self, sqlite_conn):
        frame = sqlite_conn.select_one('SELECT ID, Name FROM Item ORDER BY ID', None, db.frame_extractor)

        assert isinstance(frame, pd.DataFrame)
        assert list(frame.columns) == ['ID', 'Name']
        assert frame['Name'].tolist() == ['Widget', 'Gadget', 'Sprocket']

    def test_frame_extractor_empty(self, sqlite_conn):
        frame = sqlite_conn.select_one('SELECT ID, Name FROM Item WHERE ID < 0', None, db.frame_extractor)

        assert frame.empty
        assert list(frame.columns) == ['ID', 'Name']

    def test_grouped_extractor(self, sqlite_conn):
        groups = sqlite_conn.select_list('SELECT Kind, Name FROM Item ORDER BY Kind, ID', None,
                                         db.grouped('Kind', lambda row: row['Name']))
        assert groups == [(1, ['Widget']), (2, ['Gadget', 'Sprocket'])]

    def test_extractor_with_args(self, sqlite_conn):
        def priced_above(cursor, threshold):
            for row in cursor:
                price = row.get_decimal_or_zero('Price')
                if price > threshold:
                    yield row.get_nullable_string('Name')

        names = sqlite_conn.select_list('SELECT Name, Price FROM Item ORDER BY ID', None,
                                        Extractor(priced_above, decimal.Decimal('1')))
        assert names == ['Widget', 'Gadget']


class TestExecute:
    """Test non-query execution."""

    def test_rowcount(self, sqlite_conn):
        count = db.update(sqlite_conn, 'UPDATE Item SET Quantity=0 WHERE Kind=:Kind', single('Kind', ItemKind.PART))
        assert count == 2

    def test_changes_persist(self, sqlite_conn):
        db.delete(sqlite_conn, 'DELETE FROM Item WHERE ID=:ID', single('ID', 8))
        assert sqlite_conn.select_value('SELECT COUNT(*) FROM Item', None, int) == 2

    def test_execute_with_row_id(self, sqlite_conn):
        count, rowid = sqlite_conn.execute_with_row_id(
            'INSERT INTO Item (Name, Price) VALUES (:Name, :Price)',
            params(Name='Bolt', Price=decimal.Decimal('0.25')))

        assert count == 1
        assert rowid == 10
        assert sqlite_conn.select_value('SELECT Name FROM Item WHERE ID=:ID', single('ID', rowid), str) == 'Bolt'

    def test_typed_round_trip(self, sqlite_conn):
        uid = uuid.uuid4()
        created = datetime.datetime(2024, 7, 4, 18, 45, 30, 123456)
        db.insert(sqlite_conn, """
            INSERT INTO Item (ID, Name, Price, Uid, Created, Kind, Active)
            VALUES (:ID, :Name, :Price, :Uid, :Created, :Kind, :Active)
            """, params(ID=20, Name='Nut', Price=decimal.Decimal('1.75'), Uid=uid, Created=created,
                        Kind=ItemKind.PART, Active=False))

        item = sqlite_conn.select_one('SELECT * FROM Item WHERE ID=20', None, Item)
        assert (item.Uid, item.Created, item.Kind, item.Active, item.Price) == (
            uid, created, ItemKind.PART, False, decimal.Decimal('1.75'))

    def test_blob_round_trip(self, sqlite_conn):
        db.execute(sqlite_conn, 'CREATE TABLE Attachment (ID INTEGER PRIMARY KEY, Data BLOB)')
        db.execute(sqlite_conn, 'INSERT INTO Attachment (Data) VALUES (:Data)', params(Data=bytearray(b'\x00\xff')))

        assert sqlite_conn.select_value('SELECT typeof(Data) FROM Attachment') == 'blob'
        assert sqlite_conn.select_value('SELECT Data FROM Attachment', None, bytes) == b'\x00\xff'

    def test_uuid_from_blob(self, sqlite_conn):
        uid = uuid.uuid4()
        db.execute(sqlite_conn, 'CREATE TABLE Ref (Uid BLOB)')
        db.execute(sqlite_conn, 'INSERT INTO Ref VALUES (:Uid)', params(Uid=uid.bytes))
        assert sqlite_conn.select_value('SELECT Uid FROM Ref', None, uuid.UUID) == uid


class TestErrors:
    """Test failure reporting."""

    def test_query_error_carries_sql_and_cause(self, sqlite_conn):
        with pytest.raises(db.QueryError) as exc_info:
            sqlite_conn.execute('UPDATE Missing SET x=:x', params(x=1))

        err = exc_info.value
        assert err.sql == 'UPDATE Missing SET x=:x'
        assert err.parameters == ('x',)
        assert isinstance(err.__cause__, sqlite3.OperationalError)
        assert 'UPDATE Missing' in str(err)

    def test_constraint_violation(self, sqlite_conn):
        with pytest.raises(db.IntegrityViolationError) as exc_info:
            sqlite_conn.execute("INSERT INTO Item (Name) VALUES ('Widget')")

        assert isinstance(exc_info.value, db.QueryError)
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)

    def test_binding_error(self, sqlite_conn):
        with pytest.raises(db.BindingError):
            sqlite_conn.select_one('SELECT ID FROM Item WHERE Tag IN (:tag_list)', params(tags=[1]), int)

    def test_conversion_error(self, sqlite_conn):
        with pytest.raises(db.TypeConversionError):
            sqlite_conn.select_one('SELECT Name FROM Item WHERE ID=7', None, int)

    def test_connection_usable_after_error(self, sqlite_conn):
        with pytest.raises(db.QueryError):
            sqlite_conn.select_one('SELECT nope FROM Item')
        assert sqlite_conn.select_value('SELECT COUNT(*) FROM Item', None, int) == 3


class TestOptions:
    """Test per-connection options."""

    def test_foreign_keys_enforced(self, sqlite_path):
        cn = db.connect({'database': sqlite_path})
        db.execute(cn, 'CREATE TABLE Parent (ID INTEGER PRIMARY KEY)')
        db.execute(cn, 'CREATE TABLE Child (ID INTEGER PRIMARY KEY, ParentID INTEGER REFERENCES Parent(ID))')

        with pytest.raises(db.IntegrityViolationError):
            db.execute(cn, 'INSERT INTO Child (ParentID) VALUES (:ParentID)', single('ParentID', 99))

    def test_foreign_keys_disabled(self, sqlite_path):
        cn = db.connect({'database': sqlite_path, 'foreign_keys': False})
        db.execute(cn, 'CREATE TABLE Parent (ID INTEGER PRIMARY KEY)')
        db.execute(cn, 'CREATE TABLE Child (ID INTEGER PRIMARY KEY, ParentID INTEGER REFERENCES Parent(ID))')

        assert db.execute(cn, 'INSERT INTO Child (ParentID) VALUES (:ParentID)', single('ParentID', 99)) == 1

    def test_detect_types(self, sqlite_path):
        cn = db.connect({'database': sqlite_path, 'detect_types': True})
        db.execute(cn, 'CREATE TABLE Event (At datetime, Day date)')
        db.execute(cn, 'INSERT INTO Event VALUES (:At, :Day)',
                   params(At=datetime.datetime(2024, 1, 2, 3, 4, 5), Day=datetime.date(2024, 1, 2)))

        row = cn.select_one('SELECT At, Day FROM Event', None, dict)
        assert row == {'At': datetime.datetime(2024, 1, 2, 3, 4, 5), 'Day': datetime.date(2024, 1, 2)}

    def test_memory_database_shared_across_handles(self, sqlite_memory_conn):
        assert sqlite_memory_conn.select_one('SELECT id, name FROM Item WHERE id=:ID',
                                             single('ID', 7), Entity(Widget)) == Widget(7, 'Widget')
        assert sqlite_memory_conn.select_value('SELECT COUNT(*) FROM Item', None, int) == 3


class TestMemoryDatabase:
    """Test that in-memory databases are private to their connector."""

    def test_connectors_do_not_share_data(self):
        first = db.connect({'database': ':memory:'})
        second = db.connect({'database': ':memory:'})

        first.execute('CREATE TABLE OnlyInFirst (x integer)')

        assert first.table_exists('OnlyInFirst')
        assert not second.table_exists('OnlyInFirst')

    def test_handle_refused_during_open_transaction(self, sqlite_memory_conn):
        with sqlite_memory_conn.transaction() as tx:
            tx.execute("INSERT INTO Item (ID, Name) VALUES (10, 'Bolt')")
            with pytest.raises(db.TransactionError, match='open transaction on another handle'):
                sqlite_memory_conn.select_value('SELECT COUNT(*) FROM Item', None, int)
            assert tx.select_one('SELECT COUNT(*) FROM Item', None, int) == 4

        assert tx.state is TransactionState.COMMITTED
        assert sqlite_memory_conn.select_value('SELECT COUNT(*) FROM Item', None, int) == 4

    def test_transaction_refused_while_stream_open(self, sqlite_memory_conn):
        stream = sqlite_memory_conn.select_many('SELECT ID FROM Item ORDER BY ID', None, int)
        assert next(stream) == 7

        with pytest.raises(db.TransactionError, match='other handles'):
            sqlite_memory_conn.execute_batch([db.PreparedCommand('DELETE FROM Item')])

        assert stream.to_list() == [8, 9]
        assert sqlite_memory_conn.execute_batch([db.PreparedCommand('DELETE FROM Item WHERE ID=7')]) == 1
        assert sqlite_memory_conn.select_value('SELECT COUNT(*) FROM Item', None, int) == 2
