import logging

import pytest
from sqlitedata.row import entity_map


@pytest.fixture(autouse=True)
def clear_entity_maps():
    """Clear cached entity maps before and after each test to ensure test isolation."""
    entity_map.cache_clear()
    yield
    entity_map.cache_clear()


@pytest.fixture(autouse=True)
def debug_logging(caplog):
    caplog.set_level(logging.DEBUG, logger='sqlitedata')


pytest_plugins = [
    'tests.fixtures.entities',
    'tests.fixtures.sqlite',
]
