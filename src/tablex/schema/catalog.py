"""
Schema Catalog

Reads live table, column, foreign-key and index metadata from the engine's
reflection views and the table-policy system table. The catalog is the only
place that turns engine metadata into ``TableSchema`` structures; nothing in
the core parses stored definition text.
"""

import logging

from tablex.core.settings import CoreSettings
from tablex.core.sql_utils import quote_identifier
from tablex.domain.errors import NotFound
from tablex.domain.models import (
    AccessPolicy,
    ColumnDefault,
    ColumnDescriptor,
    ForeignKeyDescriptor,
    IndexDescriptor,
    TableDescriptor,
    TableSchema,
)
from tablex.storage.port import StoragePort

from .ddl import NameValidator

logger = logging.getLogger(__name__)


class SchemaCatalog:
    """Structured view of the live schema"""

    def __init__(self, storage: StoragePort, validator: NameValidator, settings: CoreSettings) -> None:
        self.storage = storage
        self.validator = validator
        self.settings = settings

    # Tables

    def list_table_rows(self) -> list[dict[str, str]]:
        """Raw ``(name, sql)`` rows for every table, ordered by name."""
        result = (
            self.storage.prepare(
                "SELECT name, sql FROM sqlite_master WHERE type = 'table' ORDER BY name"
            )
            .bind()
            .all()
        )
        return [{"name": row["name"], "sql": row["sql"] or ""} for row in result.rows]

    def list_tables(self) -> list[TableDescriptor]:
        policies = self._policy_rows()
        tables: list[TableDescriptor] = []
        for row in self.list_table_rows():
            name = row["name"]
            if self.validator.is_protected(name):
                tables.append(
                    TableDescriptor(name=name, kind="system", sql=row["sql"], access_policy="system")
                )
                continue
            policy = policies.get(name.lower(), self.settings.default_access_policy)
            tables.append(TableDescriptor(name=name, kind="user", sql=row["sql"], access_policy=policy))
        return tables

    def user_table_names(self) -> list[str]:
        return [
            row["name"] for row in self.list_table_rows() if not self.validator.is_protected(row["name"])
        ]

    def resolve_table(self, name: str) -> str | None:
        """Return the stored spelling of ``name`` (identifiers are case-insensitive), or None."""
        row = (
            self.storage.prepare(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ? COLLATE NOCASE"
            )
            .bind(name)
            .first()
        )
        return row["name"] if row else None

    def require_table(self, name: str) -> str:
        resolved = self.resolve_table(name)
        if resolved is None:
            raise NotFound(message=f"Table '{name}' does not exist")
        return resolved

    def get_table_sql(self, name: str) -> str:
        row = (
            self.storage.prepare(
                "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ? COLLATE NOCASE"
            )
            .bind(name)
            .first()
        )
        if row is None:
            raise NotFound(message=f"Table '{name}' does not exist")
        return row["sql"] or ""

    def count_rows(self, table: str) -> int:
        row = self.storage.prepare(f"SELECT COUNT(*) AS cnt FROM {quote_identifier(table)}").bind().first()
        return int(row["cnt"]) if row else 0

    # Columns, foreign keys and indexes

    def get_columns(self, table: str) -> list[ColumnDescriptor]:
        """Columns in ordinal order; ``unique`` comes from single-column UNIQUE constraints."""
        rows = self.storage.prepare("SELECT * FROM pragma_table_info(?) ORDER BY cid").bind(table).all().rows
        unique_columns = {
            index.columns[0]
            for index in self.get_indexes(table)
            if index.origin == "u" and len(index.columns) == 1
        }
        return [
            ColumnDescriptor(
                ordinal=int(row["cid"]),
                name=row["name"],
                type=row["type"] or "",
                nullable=not bool(row["notnull"]),
                default=ColumnDefault.from_raw(row["dflt_value"]),
                primary_key=bool(row["pk"]),
                unique=row["name"] in unique_columns,
            )
            for row in rows
        ]

    def get_foreign_keys(self, table: str) -> list[ForeignKeyDescriptor]:
        rows = (
            self.storage.prepare("SELECT * FROM pragma_foreign_key_list(?) ORDER BY id, seq")
            .bind(table)
            .all()
            .rows
        )
        foreign_keys: list[ForeignKeyDescriptor] = []
        for row in rows:
            ref_column = row["to"]
            if ref_column is None:
                # Reference to the parent's primary key without naming it
                parent_keys = [c.name for c in self.get_columns(row["table"]) if c.primary_key]
                ref_column = parent_keys[0] if parent_keys else "id"
            foreign_keys.append(
                ForeignKeyDescriptor(column=row["from"], ref_table=row["table"], ref_column=ref_column)
            )
        return foreign_keys

    def get_indexes(self, table: str) -> list[IndexDescriptor]:
        rows = self.storage.prepare("SELECT * FROM pragma_index_list(?)").bind(table).all().rows
        indexes: list[IndexDescriptor] = []
        for row in rows:
            info_rows = (
                self.storage.prepare("SELECT * FROM pragma_index_info(?) ORDER BY seqno")
                .bind(row["name"])
                .all()
                .rows
            )
            # Expression terms report a NULL column name
            columns = [info["name"] for info in info_rows if info["name"] is not None]
            sql_row = (
                self.storage.prepare("SELECT sql FROM sqlite_master WHERE type = 'index' AND name = ?")
                .bind(row["name"])
                .first()
            )
            indexes.append(
                IndexDescriptor(
                    name=row["name"],
                    table=table,
                    columns=columns,
                    unique=bool(row["unique"]),
                    sql=(sql_row or {}).get("sql") or "",
                    origin=row["origin"],
                    has_expression=len(columns) < len(info_rows),
                )
            )
        return sorted(indexes, key=lambda index: index.name)

    def get_table_schema(self, table: str) -> TableSchema:
        """
        Fetch the structured schema of one table.

        Raises:
            NotFound: If the table does not exist
        """
        resolved = self.require_table(table)
        return TableSchema(
            name=resolved,
            columns=self.get_columns(resolved),
            foreign_keys=self.get_foreign_keys(resolved),
            indexes=self.get_indexes(resolved),
        )

    # Access policies

    def _policy_rows(self) -> dict[str, AccessPolicy]:
        rows = self.storage.prepare("SELECT table_name, access_policy FROM table_policies").bind().all().rows
        return {row["table_name"].lower(): row["access_policy"] for row in rows}

    def get_access_policy(self, table: str) -> AccessPolicy:
        if self.validator.is_protected(table):
            return "system"
        row = (
            self.storage.prepare(
                "SELECT access_policy FROM table_policies WHERE table_name = ? COLLATE NOCASE"
            )
            .bind(table)
            .first()
        )
        if row is None:
            return self.settings.default_access_policy
        return row["access_policy"]
