"""Unit tests for oplog entry decoding."""

import pytest
from bson import Timestamp

from oplog_sync.connectors.cdc.events import OperationKind, decode_entry
from oplog_sync.errors import UnknownOperationError
from tests.fakes import oplog_entry


class TestDecodeEntry:
    """Test decode_entry."""

    def test_insert(self):
        event = decode_entry(oplog_entry("i", "shop.users", 100, 2, o={"_id": "u1", "name": "Ann"}))

        assert event.kind is OperationKind.INSERT
        assert event.namespace == "shop.users"
        assert event.timestamp == (100 << 32) + 2
        assert event.document == {"_id": "u1", "name": "Ann"}
        assert event.set_fields is None

    def test_delete(self):
        event = decode_entry(oplog_entry("d", "shop.users", 100, o={"_id": "u1"}))

        assert event.kind is OperationKind.DELETE
        assert event.document == {"_id": "u1"}

    def test_noop(self):
        event = decode_entry({"ts": Timestamp(100, 1), "op": "n", "ns": "", "o": {"msg": "periodic noop"}})
        assert event.kind is OperationKind.NOOP

    def test_update_with_operators(self):
        event = decode_entry(oplog_entry(
            "u", "shop.users", 100,
            o={"$set": {"age": 31}, "$unset": {"nickname": True}},
            o2={"_id": "u1"}
        ))

        assert event.kind is OperationKind.UPDATE
        assert event.set_fields == {"age": 31}
        assert event.unset_fields == {"nickname": True}
        assert event.prior_identifier == {"_id": "u1"}
        assert event.replacement is False

    def test_update_with_diff(self):
        event = decode_entry(oplog_entry(
            "u", "shop.users", 100,
            o={"$v": 2, "diff": {
                "u": {"age": 31},
                "i": {"email": "ann@example.com"},
                "d": {"nickname": False},
                "saddress": {"u": {"city": "Lyon"}},
            }},
            o2={"_id": "u1"}
        ))

        assert event.set_fields == {"age": 31, "email": "ann@example.com", "address.city": "Lyon"}
        assert event.unset_fields == {"nickname": True}
        assert event.replacement is False

    def test_update_diff_skips_array_diffs(self):
        event = decode_entry(oplog_entry(
            "u", "shop.users", 100,
            o={"$v": 2, "diff": {"u": {"age": 31}, "stags": {"a": True, "u1": "x"}}},
            o2={"_id": "u1"}
        ))

        assert event.set_fields == {"age": 31}

    def test_replacement_update(self):
        event = decode_entry(oplog_entry(
            "u", "shop.users", 100,
            o={"_id": "u1", "name": "Ann", "age": 31},
            o2={"_id": "u1"}
        ))

        assert event.replacement is True
        assert event.document["age"] == 31

    def test_command_is_rejected(self):
        with pytest.raises(UnknownOperationError) as exc_info:
            decode_entry(oplog_entry("c", "shop.$cmd", 100, o={"create": "users"}))

        assert exc_info.value.op == "c"
        assert exc_info.value.namespace == "shop.$cmd"
