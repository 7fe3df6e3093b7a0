"""Unit tests for the SQL sink, against SQLite."""

import pytest
from sqlalchemy import inspect, select, table, column

from oplog_sync.errors import SinkWriteError
from oplog_sync.etl.definitions import create_definition


def rows(sink, definition):
    query = select(*[column(c) for c in definition.column_names]).select_from(table(definition.target_name))
    with sink.engine.connect() as conn:
        return [dict(r._mapping) for r in conn.execute(query.order_by(column(definition.id_target_field)))]


class TestSQLSink:
    """Test SQLSink."""

    @pytest.fixture
    def sink(self, sqlite_sink, users_definition):
        sqlite_sink.create_tables([users_definition])
        return sqlite_sink

    def test_database_name(self, sqlite_sink):
        assert sqlite_sink.database_name == "mirror"

    def test_requires_url_or_engine(self):
        from oplog_sync.connectors.sql_sink import SQLSink
        with pytest.raises(ValueError):
            SQLSink()

    def test_create_tables_and_schema(self, sink):
        shapes = {s.name: s for s in sink.get_schema()}

        assert shapes["users"].field_names == frozenset({"_id", "name", "age", "address_city"})

    def test_schema_strips_prefix(self, sqlite_sink):
        definition = create_definition("orders", {"total": "number"}, db_name="shop", prefix="mongo_")
        sqlite_sink.create_tables([definition])

        names = [s.name for s in sqlite_sink.get_schema("mongo_")]

        assert names == ["orders"]

    def test_create_tables_replaces_existing(self, sink, users_definition):
        sink.insert_row(users_definition, {"_id": "u1", "name": "Ann", "age": 1, "address_city": None})
        sink.create_tables([users_definition])

        assert rows(sink, users_definition) == []

    def test_insert_overwrites_same_identifier(self, sink, users_definition):
        sink.insert_row(users_definition, {"_id": "u1", "name": "Ann", "age": 1, "address_city": None})
        sink.insert_row(users_definition, {"_id": "u1", "name": "Ann", "age": 2, "address_city": "Paris"})

        assert rows(sink, users_definition) == [{"_id": "u1", "name": "Ann", "age": 2, "address_city": "Paris"}]

    def test_update_only_given_columns(self, sink, users_definition):
        sink.insert_row(users_definition, {"_id": "u1", "name": "Ann", "age": 1, "address_city": "Paris"})

        sink.update_row(users_definition, "u1", {"age": 5})

        assert rows(sink, users_definition) == [{"_id": "u1", "name": "Ann", "age": 5, "address_city": "Paris"}]

    def test_delete(self, sink, users_definition):
        sink.insert_row(users_definition, {"_id": "u1", "name": "Ann", "age": 1, "address_city": None})
        sink.insert_row(users_definition, {"_id": "u2", "name": "Bob", "age": 2, "address_city": None})

        sink.delete_row(users_definition, "u1")

        assert [r["_id"] for r in rows(sink, users_definition)] == ["u2"]

    def test_write_to_missing_table_raises(self, sqlite_sink, users_definition):
        with pytest.raises(SinkWriteError) as exc_info:
            sqlite_sink.insert_row(users_definition, {"_id": "u1", "name": None, "age": None, "address_city": None})

        assert exc_info.value.table == "users"
        assert exc_info.value.operation == "insert"

    def test_column_types(self, sink):
        columns = {c["name"]: c for c in inspect(sink.engine).get_columns("users")}

        assert columns["_id"]["primary_key"] == 1
        assert "VARCHAR" in str(columns["name"]["type"])
        assert "BIGINT" in str(columns["age"]["type"])
