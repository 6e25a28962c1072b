"""
tablex

Schema management and data access core for user-defined tables: DDL
generation, table recreation, column-change validation, row-level access
control, schema snapshots and indexed search.
"""

__version__ = "0.1.0"

from .core.settings import CoreSettings, StorageCapabilities, load_settings
from .core.tasks import DeferredTaskQueue, InlineTaskRunner
from .manager import TableManager
from .storage.object_store import DirectoryObjectStore, InMemoryObjectStore
from .storage.sqlite import SQLiteStoragePort

__all__ = [
    "__version__",
    "CoreSettings",
    "DeferredTaskQueue",
    "DirectoryObjectStore",
    "InMemoryObjectStore",
    "InlineTaskRunner",
    "SQLiteStoragePort",
    "StorageCapabilities",
    "TableManager",
    "load_settings",
]
