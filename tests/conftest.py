"""Shared fixtures for oplog-sync tests."""

import pytest

from oplog_sync.connectors.sql_sink import SQLSink
from oplog_sync.etl.definitions import create_definition


@pytest.fixture
def users_definition():
    """Definition of shop.users with a nested field."""
    return create_definition(
        "users",
        {"name": "string", "age": "integer", "address.city": "string"},
        db_name="shop"
    )


@pytest.fixture
def sqlite_sink(tmp_path):
    """File-backed SQLite sink shared by several threads."""
    sink = SQLSink(url=f"sqlite:///{tmp_path / 'mirror.db'}")
    yield sink
    sink.close()
