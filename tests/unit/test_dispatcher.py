"""Unit tests for change dispatch."""

from unittest.mock import Mock

import pytest

from oplog_sync.connectors.cdc.events import ChangeEvent, OperationKind
from oplog_sync.errors import SinkWriteError
from oplog_sync.etl.definitions import create_definition
from oplog_sync.sync.dispatcher import OpDispatcher, build_row, build_update


def update_event(set_fields=None, unset_fields=None, ns="shop.users"):
    return ChangeEvent(
        namespace=ns,
        kind=OperationKind.UPDATE,
        timestamp=1,
        document={},
        set_fields=set_fields,
        unset_fields=unset_fields,
        prior_identifier={"_id": "u1"}
    )


class TestOpDispatcher:
    """Test OpDispatcher routing and field selection."""

    @pytest.fixture
    def sink(self):
        return Mock()

    @pytest.fixture
    def dispatcher(self, sink, users_definition):
        return OpDispatcher(sink, [users_definition])

    def test_insert_writes_every_field(self, dispatcher, sink, users_definition):
        event = ChangeEvent(
            namespace="shop.users",
            kind=OperationKind.INSERT,
            timestamp=1,
            document={"_id": "u1", "name": "Ann", "age": "31", "address": {"city": "Paris"}, "extra": 1}
        )

        dispatcher.dispatch(event)

        sink.insert_row.assert_called_once_with(
            users_definition,
            {"_id": "u1", "name": "Ann", "age": 31, "address_city": "Paris"}
        )

    def test_insert_missing_fields_are_null(self, dispatcher, sink, users_definition):
        dispatcher.dispatch(ChangeEvent("shop.users", OperationKind.INSERT, 1, {"_id": "u1"}))

        sink.insert_row.assert_called_once_with(
            users_definition,
            {"_id": "u1", "name": None, "age": None, "address_city": None}
        )

    def test_update_touches_only_changed_fields(self, dispatcher, sink, users_definition):
        dispatcher.dispatch(update_event(set_fields={"age": 1}, unset_fields={"name": True}))

        sink.update_row.assert_called_once_with(users_definition, "u1", {"age": 1, "name": None})

    def test_update_with_dotted_set_key(self, dispatcher, sink, users_definition):
        dispatcher.dispatch(update_event(set_fields={"address.city": "Lyon"}))

        sink.update_row.assert_called_once_with(users_definition, "u1", {"address_city": "Lyon"})

    def test_update_with_nested_set_value(self, dispatcher, sink, users_definition):
        dispatcher.dispatch(update_event(set_fields={"address": {"city": "Lyon"}}))

        sink.update_row.assert_called_once_with(users_definition, "u1", {"address_city": "Lyon"})

    def test_update_without_defined_fields_makes_no_call(self, dispatcher, sink):
        dispatcher.dispatch(update_event(set_fields={"unmapped": 1}))
        dispatcher.dispatch(update_event())

        sink.update_row.assert_not_called()

    def test_replacement_update_writes_whole_document(self, dispatcher, sink, users_definition):
        event = ChangeEvent(
            namespace="shop.users",
            kind=OperationKind.UPDATE,
            timestamp=1,
            document={"_id": "u1", "name": "Ann"},
            prior_identifier={"_id": "u1"},
            replacement=True
        )

        dispatcher.dispatch(event)

        sink.update_row.assert_called_once_with(
            users_definition, "u1", {"name": "Ann", "age": None, "address_city": None}
        )

    def test_delete(self, dispatcher, sink, users_definition):
        dispatcher.dispatch(ChangeEvent("shop.users", OperationKind.DELETE, 1, {"_id": "u1"}))

        sink.delete_row.assert_called_once_with(users_definition, "u1")

    def test_unknown_namespace_is_dropped(self, dispatcher, sink):
        dispatcher.dispatch(ChangeEvent("shop.orders", OperationKind.INSERT, 1, {"_id": "o1"}))
        dispatcher.dispatch(update_event(set_fields={"age": 1}, ns="shop.orders"))
        dispatcher.dispatch(ChangeEvent("shop.orders", OperationKind.DELETE, 1, {"_id": "o1"}))

        assert sink.mock_calls == []

    def test_noop_is_ignored(self, dispatcher, sink):
        dispatcher.dispatch(ChangeEvent("shop.users", OperationKind.NOOP, 1, {}))
        assert sink.mock_calls == []

    def test_write_errors_propagate(self, dispatcher, sink):
        sink.delete_row.side_effect = SinkWriteError("locked", table="users", operation="delete")

        with pytest.raises(SinkWriteError):
            dispatcher.dispatch(ChangeEvent("shop.users", OperationKind.DELETE, 1, {"_id": "u1"}))

    def test_identifier_is_converted(self, sink):
        definition = create_definition("counters", {"_id": "integer", "value": "integer"}, db_name="shop")
        dispatcher = OpDispatcher(sink, [definition])

        dispatcher.dispatch(ChangeEvent("shop.counters", OperationKind.DELETE, 1, {"_id": "7"}))

        sink.delete_row.assert_called_once_with(definition, 7)


class TestRowBuilders:
    """Test build_row and build_update."""

    def test_build_row_uses_column_names(self, users_definition):
        row = build_row(users_definition, {"_id": "u1", "address": {"city": "Paris"}})
        assert row["address_city"] == "Paris"

    def test_build_update_ignores_unmapped(self, users_definition):
        assert build_update(users_definition, {"other": 1}, {"more": True}) == {}
