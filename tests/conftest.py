from collections.abc import Iterator

import pytest

from tablex.core.settings import CoreSettings
from tablex.core.tasks import DeferredTaskQueue
from tablex.domain.models import ColumnDefinition
from tablex.manager import TableManager
from tablex.storage.object_store import InMemoryObjectStore
from tablex.storage.sqlite import SQLiteStoragePort
from tests.utils import RecordingStoragePort


@pytest.fixture
def storage() -> Iterator[SQLiteStoragePort]:
    """In-memory SQLite storage port"""
    port = SQLiteStoragePort(":memory:")
    yield port
    port.close()


@pytest.fixture
def recording_storage(storage: SQLiteStoragePort) -> RecordingStoragePort:
    return RecordingStoragePort(storage)


@pytest.fixture
def task_queue() -> DeferredTaskQueue:
    return DeferredTaskQueue()


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def manager(
    storage: SQLiteStoragePort,
    task_queue: DeferredTaskQueue,
    object_store: InMemoryObjectStore,
) -> TableManager:
    """Manager with deferred background work and an in-memory snapshot mirror"""
    return TableManager(storage, background=task_queue, object_store=object_store)


@pytest.fixture
def quiet_manager(storage: SQLiteStoragePort) -> TableManager:
    """Manager without automatic pre-change snapshots"""
    return TableManager(storage, settings=CoreSettings(auto_snapshots=False))


@pytest.fixture
def orders_table(manager: TableManager) -> str:
    """Public ``orders`` table with an indexed ``status`` column"""
    manager.create_table(
        "orders",
        [
            ColumnDefinition(name="status", type="TEXT"),
            ColumnDefinition(name="amount", type="INTEGER"),
            ColumnDefinition(name="note", type="TEXT"),
        ],
        access_policy="public",
    )
    manager.create_index("orders", ["status"])
    manager.create_index("orders", ["amount"])
    return "orders"
