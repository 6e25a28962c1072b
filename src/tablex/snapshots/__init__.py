"""Schema snapshots: capture, storage, restore and comparison."""

from .capture import CapturedTable, capture_tables, schema_hash
from .differ import compare_tables
from .store import SnapshotStore

__all__ = [
    "CapturedTable",
    "SnapshotStore",
    "capture_tables",
    "compare_tables",
    "schema_hash",
]
