"""
Exception hierarchy for oplog-sync.

Transient source errors are absorbed by the tail loop; everything that can
desynchronize the sink surfaces as one of these.
"""


class SyncError(Exception):
    """Base exception for replication errors."""
    pass


class ConfigurationError(SyncError):
    """Invalid or missing configuration."""
    pass


class DefinitionError(ConfigurationError):
    """A dataset mapping cannot be compiled into a Definition."""
    pass


class CheckpointError(SyncError):
    """Error saving/loading checkpoint."""
    pass


class SinkWriteError(SyncError):
    """A write was rejected by the sink. Fatal for the tail path."""

    def __init__(self, message: str, table: str = None, operation: str = None):
        super().__init__(message)
        self.table = table
        self.operation = operation


class ImportFailedError(SyncError):
    """Bulk load of one dataset was aborted."""

    def __init__(self, message: str, dataset: str = None, loaded: int = 0):
        super().__init__(message)
        self.dataset = dataset
        self.loaded = loaded


class TailError(SyncError):
    """Unrecoverable error inside a tail cycle."""
    pass


class UnknownOperationError(TailError):
    """Oplog entry carries an operation kind we do not replicate."""

    def __init__(self, op: str, namespace: str = None):
        super().__init__(f"Unknown oplog operation '{op}' on {namespace}")
        self.op = op
        self.namespace = namespace
