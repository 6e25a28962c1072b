"""
Table Manager

Facade that wires the schema, data and snapshot components to one storage
port, one optional object store and one background-task port, and exposes the
operations the platform's routes call.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Literal

from tablex.core.settings import CoreSettings
from tablex.core.sql_parser import extract_table_references, find_word_references, parse_select
from tablex.core.sql_utils import split_sql_statements
from tablex.core.tasks import BackgroundTasks, InlineTaskRunner
from tablex.data.access import AccessControlGate
from tablex.data.records import RecordRepository, utc_timestamp
from tablex.data.search import SearchIndexResolver
from tablex.domain.errors import (
    DuplicateName,
    NotFound,
    StorageFailure,
    SystemTableProtected,
    UnsupportedQuery,
    ValidationFailed,
)
from tablex.domain.models import (
    AccessContext,
    AccessPolicy,
    ColumnChangeRequest,
    ColumnDefinition,
    ColumnDescriptor,
    ForeignKeyDescriptor,
    ForeignKeyTarget,
    IndexDescriptor,
    SchemaSnapshot,
    SearchPredicate,
    SnapshotType,
    TableDescriptor,
)
from tablex.domain.results import (
    SearchableColumn,
    SearchResult,
    SnapshotComparison,
    SnapshotPage,
    TableDataResult,
    ValidationResult,
)
from tablex.schema.catalog import SchemaCatalog
from tablex.schema.changes import (
    AddColumnChange,
    ColumnChange,
    ColumnChangeApplier,
    DirectAlterStrategy,
    DropColumnChange,
    ModifyColumnChange,
    RenameColumnChange,
    apply_change,
)
from tablex.schema.ddl import IMPLICIT_COLUMNS, DDLGenerator, NameValidator
from tablex.schema.recreation import TableRecreationEngine
from tablex.schema.validator import ColumnChangeValidator
from tablex.snapshots.store import SnapshotStore
from tablex.storage.port import ObjectStore, QueryResult, Row, StoragePort
from tablex.storage.system_schema import (
    CORE_SYSTEM_TABLES,
    SYSTEM_TABLE_STATEMENTS,
    UPSERT_TABLE_POLICY,
)

logger = logging.getLogger(__name__)


class TableManager:
    """Schema management and data access for user tables"""

    def __init__(
        self,
        storage: StoragePort,
        settings: CoreSettings | None = None,
        background: BackgroundTasks | None = None,
        object_store: ObjectStore | None = None,
        install: bool = True,
    ) -> None:
        """Wire the core components

        Args:
            storage: Storage port to the SQL engine
            settings: Core settings (defaults when omitted)
            background: Port for work deferred past the response (inline when omitted)
            object_store: Optional store mirroring snapshot blobs
            install: Create the core system tables if they are missing
        """
        self.storage = storage
        self.settings = settings if settings is not None else CoreSettings()
        self.background: BackgroundTasks = background if background is not None else InlineTaskRunner()
        self.object_store = object_store

        self.validator = NameValidator(self.settings.protected_tables)
        self.ddl = DDLGenerator(self.validator)
        self.catalog = SchemaCatalog(storage, self.validator, self.settings)
        self.column_validator = ColumnChangeValidator(storage, self.catalog, self.validator)
        self.recreation = TableRecreationEngine(storage, self.catalog, self.ddl)
        self.applier = ColumnChangeApplier(
            [DirectAlterStrategy(storage, self.ddl, self.settings.capabilities), self.recreation]
        )
        self.records = RecordRepository(storage, self.catalog, self.validator, self.settings)
        self.search = SearchIndexResolver(storage, self.catalog, self.validator, self.settings)
        self.gate = AccessControlGate(
            storage, self.catalog, self.validator, self.records, self.search, self.settings
        )
        self.snapshots = SnapshotStore(
            storage, self.catalog, self.settings, self.background, object_store
        )
        self._row_counts: dict[str, int] = {}

        if install:
            self.install_system_tables()

    def install_system_tables(self) -> None:
        """Create the snapshot, counter and policy tables when missing."""
        self.storage.batch([self.storage.prepare(sql) for sql in SYSTEM_TABLE_STATEMENTS])

    # Tables

    def get_tables(self, with_row_counts: bool = False) -> list[TableDescriptor]:
        """
        List every table with its kind and access policy.

        With ``with_row_counts`` the user tables are counted now (a failing count is
        logged and reported as 0); otherwise cached counts are returned and a
        refresh is handed to the background port.
        """
        tables = self.catalog.list_tables()
        user_tables = [table.name for table in tables if table.kind == "user"]
        if with_row_counts:
            for name in user_tables:
                try:
                    self._row_counts[name] = self.catalog.count_rows(name)
                except StorageFailure:
                    logger.warning("Row count for '%s' failed", name, exc_info=True)
                    self._row_counts[name] = 0
        else:
            self._defer_row_count_refresh(user_tables)

        return [
            table.model_copy(update={"row_count": self._row_counts.get(table.name)})
            if table.kind == "user"
            else table
            for table in tables
        ]

    def _defer_row_count_refresh(self, tables: list[str]) -> None:
        if not tables:
            return

        def refresh_row_counts() -> None:
            for name in tables:
                self._row_counts[name] = self.catalog.count_rows(name)

        self.background.defer_after_response(refresh_row_counts)

    def get_table_columns(self, table: str) -> list[ColumnDescriptor]:
        self.validator.validate_identifier(table, "table")
        return self.catalog.get_columns(self.catalog.require_table(table))

    def get_foreign_keys(self, table: str) -> list[ForeignKeyDescriptor]:
        self.validator.validate_identifier(table, "table")
        return self.catalog.get_foreign_keys(self.catalog.require_table(table))

    def _check_foreign_key_target(self, target: ForeignKeyTarget) -> None:
        self.validator.validate_identifier(target.table, "table")
        self.validator.validate_identifier(target.column, "column")
        self.validator.ensure_not_protected(target.table)
        resolved = self.catalog.resolve_table(target.table)
        if resolved is None:
            raise ValidationFailed(message=f"Referenced table '{target.table}' does not exist")
        if target.column not in {c.name for c in self.catalog.get_columns(resolved)}:
            raise ValidationFailed(
                message=f"Referenced column '{target.column}' does not exist in '{resolved}'"
            )

    def create_table(
        self,
        name: str,
        columns: list[ColumnDefinition],
        access_policy: Literal["public", "private"] | None = None,
    ) -> TableDescriptor:
        """
        Create a user table with the implicit id/created_at/updated_at columns.

        Private tables also get the owner column.

        Raises:
            InvalidIdentifier: On a bad table/column name or unsupported type
            SystemTableProtected: If the name is protected
            DuplicateName: If the table or a column name already exists
            ValidationFailed: If a foreign key points at a missing table or column
        """
        policy = access_policy or self.settings.default_access_policy
        owner_column = self.settings.owner_column if policy == "private" else None
        sql = self.ddl.create_table(name, columns, owner_column)
        if self.catalog.resolve_table(name) is not None:
            raise DuplicateName(message=f"Table '{name}' already exists")
        own_columns = {column.name.lower() for column in columns} | set(IMPLICIT_COLUMNS)
        if owner_column is not None:
            own_columns.add(owner_column.lower())
        for column in columns:
            target = column.foreign_key
            if target is None:
                continue
            if target.table.lower() != name.lower():
                self._check_foreign_key_target(target)
            elif target.column.lower() not in own_columns:
                raise ValidationFailed(
                    message=f"Referenced column '{target.column}' does not exist in '{name}'"
                )

        self._pre_change_snapshot(f"Before creating table {name}")
        self.storage.batch(
            [
                self.storage.prepare(sql),
                self.storage.prepare(UPSERT_TABLE_POLICY).bind(name, policy, utc_timestamp()),
            ]
        )
        logger.info("Created %s table '%s'", policy, name)
        return TableDescriptor(
            name=name, kind="user", sql=self.catalog.get_table_sql(name), row_count=0, access_policy=policy
        )

    def drop_table(self, name: str) -> None:
        self.validator.validate_table_name(name)
        resolved = self.catalog.require_table(name)
        self._pre_change_snapshot(f"Before dropping table {resolved}")
        self.storage.batch(
            [
                self.storage.prepare(self.ddl.drop_table(resolved)),
                self.storage.prepare(
                    "DELETE FROM table_policies WHERE table_name = ? COLLATE NOCASE"
                ).bind(resolved),
            ]
        )
        self._row_counts.pop(resolved, None)
        logger.info("Dropped table '%s'", resolved)

    # Columns

    def add_column(self, table: str, column: ColumnDefinition) -> list[ColumnDescriptor]:
        resolved = self._resolve_user_table(table)
        self.validator.validate_identifier(column.name, "column")
        if column.foreign_key is not None:
            self._check_foreign_key_target(column.foreign_key)
        return self._apply_change(AddColumnChange(table=resolved, column=column))

    def rename_column(self, table: str, old_name: str, new_name: str) -> list[ColumnDescriptor]:
        resolved = self._resolve_user_table(table)
        self.validator.validate_identifier(old_name, "column")
        self.validator.validate_identifier(new_name, "column")
        return self._apply_change(
            RenameColumnChange(table=resolved, old_name=old_name, new_name=new_name)
        )

    def drop_column(self, table: str, column: str) -> list[ColumnDescriptor]:
        resolved = self._resolve_user_table(table)
        self.validator.validate_identifier(column, "column")
        return self._apply_change(DropColumnChange(table=resolved, column=column))

    def validate_column_changes(
        self, table: str, column: str, request: ColumnChangeRequest
    ) -> ValidationResult:
        resolved = self._resolve_user_table(table)
        self.validator.validate_identifier(column, "column")
        return self.column_validator.validate(resolved, column, request)

    def modify_column(
        self, table: str, column: str, request: ColumnChangeRequest
    ) -> list[ColumnDescriptor]:
        """
        Change a column's type, nullability or foreign key.

        Validation runs first; when it fails no statement is issued.

        Raises:
            ValidationFailed: Carrying the validation errors and conflicting-row count
        """
        if request.is_empty:
            raise ValidationFailed(message="No column changes requested")
        resolved = self._resolve_user_table(table)
        self.validator.validate_identifier(column, "column")
        if request.foreign_key is not None:
            self._check_foreign_key_target(request.foreign_key)

        validation = self.column_validator.validate(resolved, column, request)
        if not validation.valid:
            raise ValidationFailed(
                message=f"Validation failed: {'; '.join(validation.errors)}",
                errors=validation.errors,
                conflicting_rows=validation.conflicting_rows,
            )
        return self._apply_change(ModifyColumnChange(table=resolved, column=column, request=request))

    def _resolve_user_table(self, table: str) -> str:
        self.validator.validate_table_name(table)
        return self.catalog.require_table(table)

    def _apply_change(self, change: ColumnChange) -> list[ColumnDescriptor]:
        # Rejects bad changes before the snapshot and before any statement
        apply_change(self.catalog.get_table_schema(change.table), change)
        self._pre_change_snapshot(f"Before {change.kind} on {change.table}")
        self.applier.apply(change)
        return self.catalog.get_columns(change.table)

    # Records (unrestricted)

    def get_table_data(self, table: str, limit: int | None = None, offset: int = 0) -> TableDataResult:
        return self.records.get_table_data(table, limit, offset)

    def get_table_data_with_sort(
        self,
        table: str,
        sort_by: str | None = None,
        sort_order: str = "DESC",
        limit: int | None = None,
        offset: int = 0,
    ) -> TableDataResult:
        return self.records.get_table_data_with_sort(table, sort_by, sort_order, limit, offset)

    def get_record_by_id(self, table: str, record_id: str) -> Row | None:
        return self.records.get_record_by_id(table, record_id)

    def create_record(self, table: str, data: Mapping[str, Any]) -> Row:
        return self.records.create_record(table, data)

    def create_record_with_id(self, table: str, record_id: str, data: Mapping[str, Any]) -> Row:
        return self.records.create_record_with_id(table, record_id, data)

    def update_record(self, table: str, record_id: str, data: Mapping[str, Any]) -> Row:
        return self.records.update_record(table, record_id, data)

    def delete_record(self, table: str, record_id: str) -> None:
        self.records.delete_record(table, record_id)

    # Records (access controlled)

    def get_table_data_with_access_control(
        self,
        table: str,
        caller: AccessContext,
        limit: int | None = None,
        offset: int = 0,
        sort_by: str | None = None,
        sort_order: str = "DESC",
    ) -> TableDataResult:
        return self.gate.get_table_data(table, caller, limit, offset, sort_by, sort_order)

    def get_record_by_id_with_access_control(
        self, table: str, record_id: str, caller: AccessContext
    ) -> Row | None:
        """None for a missing row or one the caller may not see; never NotFound."""
        return self.gate.get_record_by_id(table, record_id, caller)

    def create_record_with_access_control(
        self, table: str, data: Mapping[str, Any], caller: AccessContext
    ) -> Row:
        return self.gate.create_record(table, data, caller)

    def update_record_with_access_control(
        self, table: str, record_id: str, data: Mapping[str, Any], caller: AccessContext
    ) -> Row:
        return self.gate.update_record(table, record_id, data, caller)

    def delete_record_with_access_control(
        self, table: str, record_id: str, caller: AccessContext
    ) -> None:
        self.gate.delete_record(table, record_id, caller)

    def get_table_access_policy(self, table: str) -> AccessPolicy:
        return self.gate.get_table_access_policy(table)

    def set_table_access_policy(self, table: str, policy: Literal["public", "private"]) -> None:
        self.gate.set_table_access_policy(table, policy)

    # Indexes

    def get_table_indexes(self, table: str) -> list[IndexDescriptor]:
        self.validator.validate_identifier(table, "table")
        return self.catalog.get_indexes(self.catalog.require_table(table))

    def get_all_user_indexes(self) -> list[IndexDescriptor]:
        """Explicit indexes of every user table."""
        return [
            index
            for name in self.catalog.user_table_names()
            for index in self.catalog.get_indexes(name)
            if index.is_explicit
        ]

    def create_index(
        self,
        table: str,
        columns: Sequence[str],
        index_name: str | None = None,
        unique: bool = False,
    ) -> IndexDescriptor:
        """
        Create an index on a user table.

        Args:
            table: User table name
            columns: Indexed columns, in order
            index_name: Index name (default ``idx_<table>_<columns>``)
            unique: Create a UNIQUE index

        Raises:
            NotFound: If the table or a column does not exist
            DuplicateName: If an index with that name exists
        """
        resolved = self._resolve_user_table(table)
        name = index_name or f"idx_{resolved}_{'_'.join(columns)}"
        known = {column.name for column in self.catalog.get_columns(resolved)}
        missing = [column for column in columns if column not in known]
        if missing:
            raise NotFound(message=f"Columns not found in '{resolved}': {', '.join(missing)}")
        sql = self.ddl.create_index(name, resolved, list(columns), unique=unique)
        if self._find_index(name) is not None:
            raise DuplicateName(message=f"Index '{name}' already exists")

        self._pre_change_snapshot(f"Before creating index {name}")
        self.storage.prepare(sql).bind().run()
        for index in self.catalog.get_indexes(resolved):
            if index.name == name:
                return index
        raise NotFound(message=f"Index '{name}' not found after creation")

    def _find_index(self, name: str) -> Row | None:
        return (
            self.storage.prepare(
                "SELECT name, tbl_name FROM sqlite_master WHERE type = 'index' AND name = ? COLLATE NOCASE"
            )
            .bind(name)
            .first()
        )

    def drop_index(self, index_name: str) -> None:
        self.validator.validate_identifier(index_name, "index")
        row = self._find_index(index_name)
        if row is None:
            raise NotFound(message=f"Index '{index_name}' not found")
        self.validator.ensure_not_protected(row["tbl_name"])
        if self.validator.is_protected(row["name"]):
            raise SystemTableProtected(message=f"Index '{row['name']}' belongs to a constraint")
        self._pre_change_snapshot(f"Before dropping index {row['name']}")
        self.storage.prepare(self.ddl.drop_index(row["name"])).bind().run()

    # Search

    def get_searchable_columns(self, table: str) -> list[SearchableColumn]:
        return self.search.get_searchable_columns(table)

    def search_records(
        self,
        table: str,
        predicates: list[SearchPredicate],
        offset: int = 0,
        limit: int | None = None,
    ) -> SearchResult:
        return self.search.search_records(table, predicates, offset, limit)

    def search_records_with_access_control(
        self,
        table: str,
        predicates: list[SearchPredicate],
        caller: AccessContext,
        offset: int = 0,
        limit: int | None = None,
    ) -> SearchResult:
        return self.gate.search_records(table, predicates, caller, offset, limit)

    # Snapshots

    def _pre_change_snapshot(self, description: str) -> None:
        if not self.settings.auto_snapshots:
            return
        try:
            self.snapshots.create_snapshot(description=description, snapshot_type="pre_change")
        except Exception:
            logger.warning("Pre-change snapshot failed (%s)", description, exc_info=True)

    def create_snapshot(
        self,
        name: str | None = None,
        description: str | None = None,
        created_by: str | None = None,
        snapshot_type: SnapshotType = "manual",
    ) -> SchemaSnapshot:
        return self.snapshots.create_snapshot(name, description, created_by, snapshot_type)

    def get_snapshots(self, limit: int = 20, offset: int = 0) -> SnapshotPage:
        return self.snapshots.get_snapshots(limit, offset)

    def get_snapshot(self, snapshot_id: str) -> SchemaSnapshot | None:
        return self.snapshots.get_snapshot(snapshot_id)

    def restore_snapshot(self, snapshot_id: str) -> SchemaSnapshot:
        """Restore a snapshot (DESTRUCTIVE: current rows are replaced by any mirrored rows)."""
        snapshot = self.snapshots.require_snapshot(snapshot_id)
        self._pre_change_snapshot(f"Before restoring v{snapshot.version}")
        restored = self.snapshots.restore_snapshot(snapshot_id)
        self._row_counts.clear()
        return restored

    def delete_snapshot(self, snapshot_id: str) -> None:
        self.snapshots.delete_snapshot(snapshot_id)

    def prune_snapshots(self, keep: int) -> int:
        return self.snapshots.prune_snapshots(keep)

    def compare_snapshots(self, first_id: str, second_id: str) -> SnapshotComparison:
        return self.snapshots.compare_snapshots(first_id, second_id)

    def has_schema_changed(self) -> bool:
        return self.snapshots.has_schema_changed()

    # Raw queries and health

    def execute_sql(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        """
        Run one read-only SELECT.

        Raises:
            SystemTableProtected: If the text references a protected table
            UnsupportedQuery: For anything that is not exactly one SELECT
        """
        protected = find_word_references(sql, self.validator.protected_tables)
        if protected:
            raise SystemTableProtected(
                message=f"Query references protected tables: {', '.join(protected)}"
            )

        statements = split_sql_statements(sql)
        if len(statements) != 1:
            raise UnsupportedQuery(
                message=f"Exactly one statement is allowed, got {len(statements)}"
            )
        statement = statements[0]

        referenced = [name for name in extract_table_references(statement) if self.validator.is_protected(name)]
        if referenced:
            raise SystemTableProtected(
                message=f"Query references protected tables: {', '.join(sorted(set(referenced)))}"
            )
        if not statement.lstrip().upper().startswith("SELECT"):
            raise UnsupportedQuery(message="Only SELECT statements are allowed")
        if parse_select(statement) is None:
            raise UnsupportedQuery(message="Statement could not be parsed as a SELECT")

        logger.debug("Executing raw query: %s", statement)
        return self.storage.prepare(statement).bind(*params).all()

    def validate_schema(self) -> ValidationResult:
        """Report missing core system tables, foreign-key violations and table drift."""
        errors: list[str] = []
        warnings: list[str] = []
        existing = {row["name"].lower() for row in self.catalog.list_table_rows()}
        for name in CORE_SYSTEM_TABLES:
            if name not in existing:
                errors.append(f"Missing system table '{name}'")

        violations = self.storage.prepare("PRAGMA foreign_key_check").bind().all().rows
        for violation in violations:
            errors.append(
                f"Foreign key violation in '{violation['table']}' row {violation['rowid']} "
                f"referencing '{violation['parent']}'"
            )

        # Policies live in table_policies; drift checks need it
        user_tables = self.catalog.list_tables() if "table_policies" in existing else []
        for table in user_tables:
            if table.kind != "user":
                continue
            names = {column.name for column in self.catalog.get_columns(table.name)}
            missing = [column for column in IMPLICIT_COLUMNS if column not in names]
            if missing:
                warnings.append(f"Table '{table.name}' lacks built-in columns: {', '.join(missing)}")
            if table.access_policy == "private" and self.settings.owner_column not in names:
                warnings.append(
                    f"Private table '{table.name}' has no '{self.settings.owner_column}' column"
                )

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            conflicting_rows=len(violations),
        )

    def count_rows(self, table: str) -> int:
        return self.records.count_rows(table)
