"""Core helpers: settings, SQL utilities and the background-task port."""

from .settings import (
    DEFAULT_PROTECTED_TABLES,
    CoreSettings,
    StorageCapabilities,
    load_settings,
)
from .sql_utils import is_valid_identifier, quote_identifier, split_sql_statements
from .tasks import BackgroundTasks, DeferredTaskQueue, InlineTaskRunner

__all__ = [
    "DEFAULT_PROTECTED_TABLES",
    "BackgroundTasks",
    "CoreSettings",
    "DeferredTaskQueue",
    "InlineTaskRunner",
    "StorageCapabilities",
    "is_valid_identifier",
    "load_settings",
    "quote_identifier",
    "split_sql_statements",
]
