"""Storage port, its SQLite adapter and the object stores."""

from .object_store import DirectoryObjectStore, InMemoryObjectStore
from .port import ObjectStore, QueryResult, Row, RunResult, Statement, StoragePort
from .sqlite import SQLiteStatement, SQLiteStoragePort
from .system_schema import CORE_SYSTEM_TABLES, SYSTEM_TABLE_STATEMENTS

__all__ = [
    "CORE_SYSTEM_TABLES",
    "SYSTEM_TABLE_STATEMENTS",
    "DirectoryObjectStore",
    "InMemoryObjectStore",
    "ObjectStore",
    "QueryResult",
    "Row",
    "RunResult",
    "SQLiteStatement",
    "SQLiteStoragePort",
    "Statement",
    "StoragePort",
]
