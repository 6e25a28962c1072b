"""
Integration tests for creating, altering and dropping user tables through TableManager.
"""

import pytest

from tablex.core.settings import CoreSettings
from tablex.core.tasks import DeferredTaskQueue
from tablex.domain.errors import (
    DuplicateName,
    InvalidIdentifier,
    NotFound,
    StorageFailure,
    SystemTableProtected,
    ValidationFailed,
)
from tablex.domain.models import ColumnDefinition, ForeignKeyTarget
from tablex.manager import TableManager
from tablex.storage.sqlite import SQLiteStoragePort
from tests.utils import RecordingStoragePort


def _user_columns(manager: TableManager, table: str) -> list[str]:
    return [column.name for column in manager.get_table_columns(table)]


class TestCreateTable:
    def test_private_table_gets_owner_column(self, manager: TableManager) -> None:
        created = manager.create_table("notes", [ColumnDefinition(name="body", type="TEXT")])

        assert created.kind == "user"
        assert created.access_policy == "private"
        assert created.row_count == 0
        assert _user_columns(manager, "notes") == ["id", "body", "owner_id", "created_at", "updated_at"]
        assert manager.get_table_access_policy("notes") == "private"

    def test_public_table_has_no_owner_column(self, manager: TableManager) -> None:
        manager.create_table("posts", [ColumnDefinition(name="title", type="TEXT")], access_policy="public")
        assert "owner_id" not in _user_columns(manager, "posts")
        assert manager.get_table_access_policy("posts") == "public"

    def test_duplicate_table_case_insensitive(self, manager: TableManager) -> None:
        manager.create_table("posts", [ColumnDefinition(name="title", type="TEXT")])
        with pytest.raises(DuplicateName):
            manager.create_table("POSTS", [ColumnDefinition(name="title", type="TEXT")])

    def test_protected_name_issues_no_statement(self, recording_storage: RecordingStoragePort) -> None:
        manager = TableManager(recording_storage)
        recording_storage.batches.clear()
        with pytest.raises(SystemTableProtected):
            manager.create_table("Admins", [ColumnDefinition(name="x", type="TEXT")])
        assert recording_storage.batches == []

    def test_invalid_name(self, manager: TableManager) -> None:
        with pytest.raises(InvalidIdentifier):
            manager.create_table("drop table", [ColumnDefinition(name="x", type="TEXT")])

    def test_foreign_key_targets_are_checked(self, manager: TableManager) -> None:
        with pytest.raises(ValidationFailed, match="does not exist"):
            manager.create_table(
                "orders",
                [ColumnDefinition(name="c", type="TEXT", foreign_key=ForeignKeyTarget(table="ghosts", column="id"))],
            )
        with pytest.raises(SystemTableProtected):
            manager.create_table(
                "orders",
                [ColumnDefinition(name="a", type="TEXT", foreign_key=ForeignKeyTarget(table="admins", column="id"))],
            )

    def test_self_reference_allowed(self, manager: TableManager) -> None:
        manager.create_table(
            "employees",
            [
                ColumnDefinition(
                    name="manager_id", type="TEXT", foreign_key=ForeignKeyTarget(table="employees", column="id")
                )
            ],
        )
        boss = manager.create_record("employees", {})
        report = manager.create_record("employees", {"manager_id": boss["id"]})
        assert report["manager_id"] == boss["id"]

    def test_foreign_key_column_is_validated(self, manager: TableManager) -> None:
        with pytest.raises(InvalidIdentifier):
            manager.create_table(
                "nodes",
                [ColumnDefinition(name="parent", type="TEXT", foreign_key=ForeignKeyTarget(table="nodes", column="bad col"))],
            )
        with pytest.raises(ValidationFailed, match="does not exist in 'nodes'"):
            manager.create_table(
                "nodes",
                [ColumnDefinition(name="parent", type="TEXT", foreign_key=ForeignKeyTarget(table="nodes", column="code"))],
            )
        assert "nodes" not in manager.catalog.user_table_names()


class TestDropTable:
    def test_drop_removes_table_and_policy(self, manager: TableManager) -> None:
        manager.create_table("notes", [ColumnDefinition(name="body", type="TEXT")])
        manager.drop_table("NOTES")

        assert manager.catalog.resolve_table("notes") is None
        row = manager.storage.prepare("SELECT COUNT(*) AS cnt FROM table_policies WHERE table_name = 'notes'").bind().first()
        assert row is not None and row["cnt"] == 0

    def test_drop_protected(self, manager: TableManager) -> None:
        with pytest.raises(SystemTableProtected):
            manager.drop_table("schema_snapshots")
        assert manager.catalog.resolve_table("schema_snapshots") == "schema_snapshots"

    def test_drop_missing(self, manager: TableManager) -> None:
        with pytest.raises(NotFound):
            manager.drop_table("ghosts")


class TestColumnOperations:
    @pytest.fixture
    def recorded(self, recording_storage: RecordingStoragePort) -> TableManager:
        manager = TableManager(recording_storage, settings=CoreSettings(auto_snapshots=False))
        manager.create_table(
            "items",
            [ColumnDefinition(name="label", type="TEXT"), ColumnDefinition(name="qty", type="INTEGER")],
            access_policy="public",
        )
        manager.create_record("items", {"label": "bolt", "qty": 3})
        recording_storage.batches.clear()
        return manager

    def test_plain_add_uses_direct_alter(
        self, recorded: TableManager, recording_storage: RecordingStoragePort
    ) -> None:
        columns = recorded.add_column("items", ColumnDefinition(name="color", type="TEXT", default="grey"))

        assert recording_storage.batches == [['ALTER TABLE "items" ADD COLUMN "color" TEXT DEFAULT \'grey\'']]
        assert columns[-1].name == "color"
        assert recorded.get_table_data("items").data[0]["color"] == "grey"

    def test_unique_add_goes_through_recreation(
        self, recorded: TableManager, recording_storage: RecordingStoragePort
    ) -> None:
        columns = recorded.add_column("items", ColumnDefinition(name="sku", type="TEXT", unique=True))

        assert any(sql.startswith('CREATE TABLE "items_temp_') for sql in recording_storage.batch_sql())
        sku = next(column for column in columns if column.name == "sku")
        assert sku.unique
        assert recorded.get_table_data("items").data[0]["label"] == "bolt"

    def test_rename_keeps_data(self, recorded: TableManager) -> None:
        recorded.rename_column("items", "qty", "quantity")
        assert "quantity" in _user_columns(recorded, "items")
        assert "qty" not in _user_columns(recorded, "items")
        assert recorded.get_table_data("items").data[0]["quantity"] == 3

    def test_drop_keeps_other_columns(self, recorded: TableManager) -> None:
        recorded.drop_column("items", "qty")
        row = recorded.get_table_data("items").data[0]
        assert "qty" not in row
        assert row["label"] == "bolt"

    def test_builtin_columns_are_refused(
        self, recorded: TableManager, recording_storage: RecordingStoragePort
    ) -> None:
        with pytest.raises(ValidationFailed):
            recorded.drop_column("items", "created_at")
        with pytest.raises(ValidationFailed):
            recorded.rename_column("items", "id", "pk")
        with pytest.raises(DuplicateName):
            recorded.add_column("items", ColumnDefinition(name="updated_at", type="TEXT"))
        assert recording_storage.batches == []

    def test_missing_column(self, recorded: TableManager) -> None:
        with pytest.raises(NotFound):
            recorded.drop_column("items", "ghost")

    def test_protected_table(self, recorded: TableManager) -> None:
        with pytest.raises(SystemTableProtected):
            recorded.add_column("table_policies", ColumnDefinition(name="x", type="TEXT"))


class TestRowCounts:
    def test_empty_deferred_queue_is_kept(self, storage: SQLiteStoragePort) -> None:
        queue = DeferredTaskQueue()
        manager = TableManager(storage, background=queue)
        assert manager.background is queue
        assert manager.snapshots.background is queue

    def test_counts_refresh_in_background(self, manager: TableManager, task_queue: DeferredTaskQueue) -> None:
        manager.create_table("notes", [ColumnDefinition(name="body", type="TEXT")])
        manager.create_record("notes", {"body": "a"})
        task_queue.drain()

        first = {table.name: table for table in manager.get_tables()}
        assert first["notes"].row_count is None
        assert first["schema_snapshots"].row_count is None

        task_queue.drain()
        second = {table.name: table for table in manager.get_tables()}
        assert second["notes"].row_count == 1

    def test_counts_on_request(self, manager: TableManager) -> None:
        manager.create_table("notes", [ColumnDefinition(name="body", type="TEXT")])
        manager.create_record("notes", {"body": "a"})
        manager.create_record("notes", {"body": "b"})
        tables = {table.name: table for table in manager.get_tables(with_row_counts=True)}
        assert tables["notes"].row_count == 2


class TestIndexes:
    @pytest.fixture
    def items(self, manager: TableManager) -> str:
        manager.create_table(
            "items",
            [ColumnDefinition(name="label", type="TEXT"), ColumnDefinition(name="code", type="TEXT", unique=True)],
        )
        return "items"

    def test_create_with_default_name(self, manager: TableManager, items: str) -> None:
        index = manager.create_index(items, ["label"])
        assert index.name == "idx_items_label"
        assert index.columns == ["label"]
        assert [ix.name for ix in manager.get_all_user_indexes()] == ["idx_items_label"]

    def test_unique_index(self, manager: TableManager, items: str) -> None:
        index = manager.create_index(items, ["label"], index_name="uq_label", unique=True)
        assert index.unique
        manager.create_record(items, {"label": "x"})
        with pytest.raises(StorageFailure):
            manager.create_record(items, {"label": "x"})

    def test_duplicate_and_missing(self, manager: TableManager, items: str) -> None:
        manager.create_index(items, ["label"])
        with pytest.raises(DuplicateName):
            manager.create_index(items, ["label"])
        with pytest.raises(NotFound):
            manager.create_index(items, ["ghost"])

    def test_drop_index(self, manager: TableManager, items: str) -> None:
        manager.create_index(items, ["label"])
        manager.drop_index("idx_items_label")
        assert manager.get_all_user_indexes() == []
        with pytest.raises(NotFound):
            manager.drop_index("idx_items_label")

    def test_constraint_and_system_indexes_protected(self, manager: TableManager, items: str) -> None:
        autoindex = next(ix for ix in manager.get_table_indexes(items) if ix.origin == "u")
        with pytest.raises(SystemTableProtected):
            manager.drop_index(autoindex.name)
        with pytest.raises(SystemTableProtected):
            manager.drop_index("idx_schema_snapshots_version")


class TestValidateSchema:
    def test_fresh_database_is_valid(self, manager: TableManager) -> None:
        result = manager.validate_schema()
        assert result.valid
        assert result.errors == []

    def test_foreign_key_violations_are_errors(self, manager: TableManager) -> None:
        manager.create_table("parents", [ColumnDefinition(name="name", type="TEXT")], access_policy="public")
        manager.create_table(
            "children",
            [ColumnDefinition(name="parent_id", type="TEXT", foreign_key=ForeignKeyTarget(table="parents", column="id"))],
            access_policy="public",
        )
        manager.storage.prepare("PRAGMA foreign_keys = OFF").bind().run()
        manager.storage.prepare('INSERT INTO "children" ("id", "parent_id") VALUES (?, ?)').bind("c1", "nobody").run()
        manager.storage.prepare("PRAGMA foreign_keys = ON").bind().run()

        result = manager.validate_schema()
        assert not result.valid
        assert result.conflicting_rows == 1
        assert "children" in result.errors[0]

    def test_drift_is_a_warning(self, manager: TableManager) -> None:
        manager.storage.prepare("CREATE TABLE legacy (x TEXT)").bind().run()
        result = manager.validate_schema()
        assert result.valid
        assert any("lacks built-in columns" in warning for warning in result.warnings)
        assert any("no 'owner_id' column" in warning for warning in result.warnings)

    def test_missing_system_table_is_an_error(self, manager: TableManager) -> None:
        manager.storage.prepare("DROP TABLE table_policies").bind().run()
        result = manager.validate_schema()
        assert not result.valid
        assert "Missing system table 'table_policies'" in result.errors

    def test_install_repairs_and_is_idempotent(self, manager: TableManager) -> None:
        snapshot = manager.create_snapshot()
        manager.storage.prepare("DROP TABLE table_policies").bind().run()

        manager.install_system_tables()
        manager.install_system_tables()

        assert manager.validate_schema().valid
        assert manager.get_snapshot(snapshot.id) == snapshot
