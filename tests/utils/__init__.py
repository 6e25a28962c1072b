"""Shared test helpers."""

from tests.utils.cli_helpers import invoke_cli
from tests.utils.storage_helpers import (
    FailingObjectStore,
    RecordingStatement,
    RecordingStoragePort,
)

__all__ = [
    "FailingObjectStore",
    "RecordingStatement",
    "RecordingStoragePort",
    "invoke_cli",
]
