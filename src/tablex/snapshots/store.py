"""
Snapshot Store

Captures, lists, restores, deletes, prunes and compares full-schema snapshots.
With an object store, each snapshot is mirrored as schema.json and data.json;
a restore reloads the mirrored rows when they are present.Versions come from a persistent counter advanced in the same batch as the
insert, so they only increase and are never reused after a deletion.
"""

import logging
import uuid

from tablex.core.settings import CoreSettings
from tablex.core.sql_utils import column_list, placeholders, quote_identifier
from tablex.core.tasks import BackgroundTasks
from tablex.data.records import utc_timestamp
from tablex.domain.errors import NotFound, TablexError, ValidationFailed
from tablex.domain.models import SchemaSnapshot, SnapshotType
from tablex.domain.results import SnapshotComparison, SnapshotPage
from tablex.schema.catalog import SchemaCatalog
from tablex.schema.dependency_graph import TableDependencyGraph
from tablex.storage.port import ObjectStore, Row, Statement, StoragePort
from tablex.storage.system_schema import SEED_SNAPSHOT_COUNTER, UPSERT_TABLE_POLICY

from .capture import (
    CapturedTable,
    TableRows,
    capture_rows,
    capture_tables,
    dump_rows,
    dump_tables,
    full_schema_text,
    load_rows,
    load_tables,
    schema_hash,
)
from .differ import compare_tables

logger = logging.getLogger(__name__)

_SNAPSHOT_COLUMNS = (
    "id, version, name, description, full_schema, tables_json, schema_hash, "
    "created_at, created_by, snapshot_type, mirror_key"
)

_ADVANCE_COUNTER = (
    "UPDATE schema_snapshot_counter SET last_version = MAX(last_version, "
    "(SELECT COALESCE(MAX(version), 0) FROM schema_snapshots)) + 1 WHERE id = 1"
)

_INSERT_SNAPSHOT = (
    "INSERT INTO schema_snapshots (id, version, name, description, full_schema, tables_json, "
    "schema_hash, created_by, snapshot_type, mirror_key) "
    "SELECT ?, last_version, COALESCE(?, 'Snapshot v' || last_version), ?, ?, ?, ?, ?, ?, ? "
    "FROM schema_snapshot_counter WHERE id = 1"
)


def _to_snapshot(row: Row) -> SchemaSnapshot:
    return SchemaSnapshot.model_validate(row)


class SnapshotStore:
    """Versioned schema snapshots on one storage port"""

    def __init__(
        self,
        storage: StoragePort,
        catalog: SchemaCatalog,
        settings: CoreSettings,
        background: BackgroundTasks,
        object_store: ObjectStore | None = None,
    ) -> None:
        self.storage = storage
        self.catalog = catalog
        self.settings = settings
        self.background = background
        self.object_store = object_store

    def mirror_key(self, snapshot_id: str) -> str:
        return f"{self.settings.snapshot_mirror_prefix}/{snapshot_id}/schema.json"

    def create_snapshot(
        self,
        name: str | None = None,
        description: str | None = None,
        created_by: str | None = None,
        snapshot_type: SnapshotType = "manual",
    ) -> SchemaSnapshot:
        """
        Capture every user table and store it as the next version.

        Args:
            name: Display name (default ``Snapshot v<version>``)
            description: Free-text description
            created_by: Caller that requested the snapshot
            snapshot_type: manual, auto or pre_change

        Returns:
            The stored snapshot
        """
        tables = capture_tables(self.catalog)
        tables_json = dump_tables(tables)
        snapshot_id = uuid.uuid4().hex
        mirror_key = self.mirror_key(snapshot_id) if self.object_store is not None else None
        rows_json: str | None = None
        if mirror_key is not None:
            try:
                rows_json = dump_rows(capture_rows(self.storage, tables))
            except TablexError:
                logger.warning(
                    "Row capture for snapshot %s failed, mirroring schema only", snapshot_id, exc_info=True
                )

        self.storage.batch(
            [
                self.storage.prepare(SEED_SNAPSHOT_COUNTER),
                self.storage.prepare(_ADVANCE_COUNTER),
                self.storage.prepare(_INSERT_SNAPSHOT).bind(
                    snapshot_id,
                    name,
                    description,
                    full_schema_text(tables),
                    tables_json,
                    schema_hash(tables),
                    created_by,
                    snapshot_type,
                    mirror_key,
                ),
            ]
        )
        snapshot = self.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFound(message=f"Snapshot '{snapshot_id}' vanished after insert")
        logger.info("Created %s snapshot v%d (%d tables)", snapshot_type, snapshot.version, len(tables))

        if mirror_key is not None:
            objects = {mirror_key: tables_json}
            if rows_json is not None:
                objects[self.data_key(snapshot_id)] = rows_json
            self._defer_mirror_put(objects)
        return snapshot

    def data_key(self, snapshot_id: str) -> str:
        return f"{self.settings.snapshot_mirror_prefix}/{snapshot_id}/data.json"

    def _mirror_keys(self, snapshot_id: str, mirror_key: str | None) -> list[str]:
        if mirror_key is None:
            return []
        return [mirror_key, self.data_key(snapshot_id)]

    def _defer_mirror_put(self, objects: dict[str, str]) -> None:
        object_store = self.object_store
        assert object_store is not None

        def mirror_snapshot() -> None:
            for key, text in objects.items():
                object_store.put(key, text)

        self.background.defer_after_response(mirror_snapshot)

    def _load_mirrored_rows(self, snapshot: SchemaSnapshot) -> TableRows:
        if self.object_store is None or snapshot.mirror_key is None:
            return {}
        try:
            text = self.object_store.get(self.data_key(snapshot.id))
            return load_rows(text) if text else {}
        except Exception:
            logger.warning(
                "Mirrored rows of snapshot v%d unreadable, restoring schema only",
                snapshot.version,
                exc_info=True,
            )
            return {}

    def _reload_rows(self, captured: list[CapturedTable], rows: TableRows) -> None:
        """Insert mirrored rows parent tables first; one batch per table."""
        graph = TableDependencyGraph.from_foreign_keys(
            {table.name: table.foreign_keys for table in captured}
        )
        reloaded = 0
        for name in graph.creation_order():
            table_rows = rows.get(name) or []
            if not table_rows:
                continue
            live = {column.name for column in self.catalog.get_columns(name)}
            names = [column for column in table_rows[0] if column in live]
            if not names:
                continue
            insert = self.storage.prepare(
                f"INSERT INTO {quote_identifier(name)} ({column_list(names)}) "
                f"VALUES ({placeholders(len(names))})"
            )
            try:
                self.storage.batch([insert.bind(*(row.get(column) for column in names)) for row in table_rows])
            except TablexError:
                logger.warning("Reloading rows of '%s' failed, table left empty", name, exc_info=True)
                continue
            reloaded += len(table_rows)
        logger.info("Reloaded %d mirrored rows", reloaded)

    def _defer_mirror_delete(self, keys: list[str]) -> None:
        object_store = self.object_store
        if object_store is None or not keys:
            return

        def delete_mirrors() -> None:
            for key in keys:
                object_store.delete(key)

        self.background.defer_after_response(delete_mirrors)

    def get_snapshots(self, limit: int = 20, offset: int = 0) -> SnapshotPage:
        """Snapshots ordered by version, newest first."""
        if limit < 1 or offset < 0:
            raise ValidationFailed(message=f"Invalid paging: limit={limit} offset={offset}")
        rows = (
            self.storage.prepare(
                f"SELECT {_SNAPSHOT_COLUMNS} FROM schema_snapshots "
                "ORDER BY version DESC LIMIT ? OFFSET ?"
            )
            .bind(limit, offset)
            .all()
            .rows
        )
        total_row = self.storage.prepare("SELECT COUNT(*) AS cnt FROM schema_snapshots").bind().first()
        return SnapshotPage(
            snapshots=[_to_snapshot(row) for row in rows],
            total=int(total_row["cnt"]) if total_row else 0,
        )

    def get_snapshot(self, snapshot_id: str) -> SchemaSnapshot | None:
        row = (
            self.storage.prepare(f"SELECT {_SNAPSHOT_COLUMNS} FROM schema_snapshots WHERE id = ?")
            .bind(snapshot_id)
            .first()
        )
        return _to_snapshot(row) if row else None

    def require_snapshot(self, snapshot_id: str) -> SchemaSnapshot:
        snapshot = self.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFound(message=f"Snapshot '{snapshot_id}' not found")
        return snapshot

    def latest_snapshot(self) -> SchemaSnapshot | None:
        row = (
            self.storage.prepare(
                f"SELECT {_SNAPSHOT_COLUMNS} FROM schema_snapshots ORDER BY version DESC LIMIT 1"
            )
            .bind()
            .first()
        )
        return _to_snapshot(row) if row else None

    def restore_plan(self, snapshot: SchemaSnapshot) -> list[Statement]:
        """Statements that replace every current user table with the captured ones."""
        captured = load_tables(snapshot.tables_json)
        current_names = self.catalog.user_table_names()
        current_graph = TableDependencyGraph.from_foreign_keys(
            {name: self.catalog.get_foreign_keys(name) for name in current_names}
        )
        captured_by_name: dict[str, CapturedTable] = {table.name: table for table in captured}
        captured_graph = TableDependencyGraph.from_foreign_keys(
            {table.name: table.foreign_keys for table in captured}
        )

        statements: list[Statement] = [
            self.storage.prepare(f"DROP TABLE {quote_identifier(name)}")
            for name in current_graph.drop_order()
        ]
        for name in captured_graph.creation_order():
            table = captured_by_name[name]
            statements.append(self.storage.prepare(table.sql))
            statements.extend(self.storage.prepare(index_sql) for index_sql in table.indexes)
            if table.access_policy in ("public", "private"):
                statements.append(
                    self.storage.prepare(UPSERT_TABLE_POLICY).bind(
                        table.name, table.access_policy, utc_timestamp()
                    )
                )

        captured_lower = {name.lower() for name in captured_by_name}
        for name in current_names:
            if name.lower() not in captured_lower:
                statements.append(
                    self.storage.prepare(
                        "DELETE FROM table_policies WHERE table_name = ? COLLATE NOCASE"
                    ).bind(name)
                )
        return statements

    def restore_snapshot(self, snapshot_id: str) -> SchemaSnapshot:
        """
        Replace every user table with the tables captured in a snapshot.

        DESTRUCTIVE: row data of the current tables is lost. Rows mirrored to
        the object store when the snapshot was taken are reloaded table by
        table; a table whose rows fail to load is logged and left empty.
        Afterwards an ``auto`` snapshot named "Restored from v<N>" is recorded
        and returned.

        Raises:
            NotFound: If the snapshot does not exist
        """
        snapshot = self.require_snapshot(snapshot_id)
        mirrored_rows = self._load_mirrored_rows(snapshot)
        statements = self.restore_plan(snapshot)
        logger.warning(
            "Restoring schema snapshot v%d: %d statements, current table data is dropped",
            snapshot.version,
            len(statements),
        )
        self.storage.batch(statements)
        if mirrored_rows:
            self._reload_rows(load_tables(snapshot.tables_json), mirrored_rows)
        return self.create_snapshot(
            name=f"Restored from v{snapshot.version}",
            description=f"Schema restored from snapshot {snapshot.id}",
            snapshot_type="auto",
        )

    def delete_snapshot(self, snapshot_id: str) -> None:
        snapshot = self.require_snapshot(snapshot_id)
        result = self.storage.prepare("DELETE FROM schema_snapshots WHERE id = ?").bind(snapshot_id).run()
        if result.changes == 0:
            raise NotFound(message=f"Snapshot '{snapshot_id}' not found")
        self._defer_mirror_delete(self._mirror_keys(snapshot.id, snapshot.mirror_key))

    def prune_snapshots(self, keep: int) -> int:
        """Delete all but the ``keep`` newest snapshots; return how many were deleted."""
        if keep < 0:
            raise ValidationFailed(message=f"keep must not be negative, got {keep}")
        rows = (
            self.storage.prepare(
                "SELECT id, mirror_key FROM schema_snapshots ORDER BY version DESC LIMIT -1 OFFSET ?"
            )
            .bind(keep)
            .all()
            .rows
        )
        if not rows:
            return 0
        self.storage.batch(
            [
                self.storage.prepare("DELETE FROM schema_snapshots WHERE id = ?").bind(row["id"])
                for row in rows
            ]
        )
        self._defer_mirror_delete(
            [key for row in rows for key in self._mirror_keys(row["id"], row["mirror_key"])]
        )
        logger.info("Pruned %d snapshots, kept %d", len(rows), keep)
        return len(rows)

    def compare_snapshots(self, first_id: str, second_id: str) -> SnapshotComparison:
        first = self.require_snapshot(first_id)
        second = self.require_snapshot(second_id)
        return compare_tables(load_tables(first.tables_json), load_tables(second.tables_json))

    def current_hash(self) -> str:
        return schema_hash(capture_tables(self.catalog))

    def has_schema_changed(self) -> bool:
        """True when the live schema differs from the newest snapshot (or none exists)."""
        latest = self.latest_snapshot()
        if latest is None:
            return True
        return self.current_hash() != latest.schema_hash
