from .dispatcher import OpDispatcher, build_row, build_update
from .bulk_loader import BulkLoader
from .engine import SyncEngine, TailGeneration

__all__ = [
    "OpDispatcher",
    "build_row",
    "build_update",
    "BulkLoader",
    "SyncEngine",
    "TailGeneration",
]
