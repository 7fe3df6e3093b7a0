"""Unit tests for checkpoint persistence."""

from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from oplog_sync.connectors.cdc.checkpoint_store import Checkpoint, CheckpointStore
from oplog_sync.errors import CheckpointError


class TestCheckpointStore:
    """Test CheckpointStore against SQLite."""

    @pytest.fixture
    def store(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'checkpoints.db'}")
        yield CheckpointStore(engine)
        engine.dispose()

    def test_load_missing_checkpoint(self, store):
        assert store.load_checkpoint("shop") is None

    def test_save_and_load(self, store):
        store.save_checkpoint("shop", 7056425925335875585)
        assert store.load_checkpoint("shop") == 7056425925335875585

    def test_save_overwrites(self, store):
        store.save_checkpoint("shop", 10)
        store.save_checkpoint("shop", 20)
        assert store.load_checkpoint("shop") == 20

    def test_services_are_isolated(self, store):
        store.save_checkpoint("shop", 10)
        store.save_checkpoint("billing", 99)

        assert store.load_checkpoint("shop") == 10
        assert store.load_checkpoint("billing") == 99

    def test_delete_checkpoint(self, store):
        store.save_checkpoint("shop", 10)
        store.delete_checkpoint("shop")
        assert store.load_checkpoint("shop") is None

    def test_read_failure_raises_checkpoint_error(self, store):
        store._read = Mock(side_effect=OperationalError("SELECT", {}, Exception("gone")))

        with pytest.raises(CheckpointError):
            store.load_checkpoint("shop")

    def test_write_failure_raises_checkpoint_error(self, store):
        store._write = Mock(side_effect=OperationalError("UPDATE", {}, Exception("gone")))

        with pytest.raises(CheckpointError):
            store.save_checkpoint("shop", 10)


class TestCheckpoint:
    """Test the in-memory checkpoint."""

    @pytest.fixture
    def store(self):
        store = Mock(spec=CheckpointStore)
        store.load_checkpoint.return_value = None
        return store

    def test_load_defaults_to_zero(self, store):
        checkpoint = Checkpoint.load(store, "shop")

        assert checkpoint.value == 0
        store.load_checkpoint.assert_called_once_with("shop")

    def test_load_stored_value(self, store):
        store.load_checkpoint.return_value = 42
        assert Checkpoint.load(store, "shop").value == 42

    def test_advance_persists(self, store):
        checkpoint = Checkpoint(store, "shop")

        assert checkpoint.advance(5) is True
        assert checkpoint.value == 5
        store.save_checkpoint.assert_called_once_with("shop", 5)

    def test_advance_is_monotonic(self, store):
        checkpoint = Checkpoint(store, "shop")

        for ts in (5, 3, 9, 9, 7):
            checkpoint.advance(ts)

        assert checkpoint.value == 9
        assert [c.args[1] for c in store.save_checkpoint.call_args_list] == [5, 9]

    def test_save_failure_does_not_stall(self, store):
        store.save_checkpoint.side_effect = CheckpointError("db down")
        checkpoint = Checkpoint(store, "shop")

        assert checkpoint.advance(5) is True
        assert checkpoint.value == 5

    def test_reset_moves_backwards(self, store):
        checkpoint = Checkpoint(store, "shop", 50)
        checkpoint.reset(10)

        assert checkpoint.value == 10
        store.save_checkpoint.assert_called_once_with("shop", 10)
