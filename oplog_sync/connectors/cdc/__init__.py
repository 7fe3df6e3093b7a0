"""
CDC (Change Data Capture) module for MongoDB oplog tailing.
"""

from .oplog_tailer import OplogTailer, TailConfig, TailerState, TailOutcome, RestartSignal
from .checkpoint_store import CheckpointStore, CheckpointRecord, Checkpoint
from .events import ChangeEvent, OperationKind, decode_entry

__all__ = [
    "OplogTailer",
    "TailConfig",
    "TailerState",
    "TailOutcome",
    "RestartSignal",
    "CheckpointStore",
    "CheckpointRecord",
    "Checkpoint",
    "ChangeEvent",
    "OperationKind",
    "decode_entry",
]
