"""Tests for the connection retry decorator and error classification."""
import sqlite3

import pytest
from sqlitedata.connection import check_connection
from sqlitedata.exceptions import is_retryable_error


class TestRetryableErrors:

    @pytest.mark.parametrize(('message', 'expected'), [
        ('database is locked', True),
        ('database table is locked', True),
        ('Database Busy', True),
        ('disk I/O error', True),
        ('near "SELEC": syntax error', False),
        ('UNIQUE constraint failed: Item.Name', False),
        ('unable to open database file', False),
    ])
    def test_classification(self, message, expected):
        assert is_retryable_error(sqlite3.OperationalError(message)) is expected


class TestCheckConnection:
    """Test retrying transient failures."""

    def test_retries_locked_database(self):
        calls = []
        sleeps = []

        @check_connection(max_retries=3, retry_delay=0.5, retry_backoff=2, sleep_func=sleeps.append)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise sqlite3.OperationalError('database is locked')
            return 'ok'

        assert flaky() == 'ok'
        assert len(calls) == 3
        assert sleeps == [0.5, 1.0]

    def test_gives_up_after_max_retries(self):
        calls = []

        @check_connection(max_retries=2, sleep_func=lambda _: None)
        def locked():
            calls.append(1)
            raise sqlite3.OperationalError('database is locked')

        with pytest.raises(sqlite3.OperationalError):
            locked()
        assert len(calls) == 2

    def test_permanent_error_not_retried(self):
        calls = []

        @check_connection(sleep_func=lambda _: None)
        def broken():
            calls.append(1)
            raise sqlite3.OperationalError('no such table: Missing')

        with pytest.raises(sqlite3.OperationalError, match='no such table'):
            broken()
        assert len(calls) == 1

    def test_bare_decorator(self):
        def answer():
            """The answer."""
            return 42

        wrapped = check_connection(answer)

        assert wrapped() == 42
        assert wrapped.__wrapped__ is answer
        assert wrapped.__name__ == 'answer'
        assert wrapped.__doc__ == 'The answer.'
