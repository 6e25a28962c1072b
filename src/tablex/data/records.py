"""
Record Repository

Unrestricted record CRUD and paging over user tables (the admin path). Row
filters passed in by the access-control gate are AND-ed into every statement,
so ownership checks and the write they guard are one conditional statement.
"""

import logging
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from tablex.core.settings import CoreSettings
from tablex.core.sql_utils import column_list, placeholders, quote_identifier
from tablex.domain.errors import NotFound, UnsupportedQuery, ValidationFailed
from tablex.domain.results import TableDataResult
from tablex.schema.catalog import SchemaCatalog
from tablex.schema.ddl import CREATED_AT_COLUMN, ID_COLUMN, UPDATED_AT_COLUMN, NameValidator
from tablex.storage.port import Row, StoragePort

logger = logging.getLogger(__name__)

RowFilters = Mapping[str, Any]


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp used for created_at / updated_at."""
    return datetime.now(UTC).isoformat(timespec="microseconds")


def new_record_id() -> str:
    return uuid.uuid4().hex


def where_clause(filters: RowFilters | None, leading: str = "WHERE") -> tuple[str, list[Any]]:
    """Render equality filters as ``WHERE "a" = ? AND "b" = ?`` with parameters."""
    if not filters:
        return "", []
    conditions = [f"{quote_identifier(column)} = ?" for column in filters]
    return f" {leading} " + " AND ".join(conditions), list(filters.values())


class RecordRepository:
    """Record operations on one storage port"""

    def __init__(
        self,
        storage: StoragePort,
        catalog: SchemaCatalog,
        validator: NameValidator,
        settings: CoreSettings,
    ) -> None:
        self.storage = storage
        self.catalog = catalog
        self.validator = validator
        self.settings = settings

    def _table(self, table: str) -> str:
        self.validator.validate_table_name(table)
        return self.catalog.require_table(table)

    def _column_names(self, table: str) -> list[str]:
        return [column.name for column in self.catalog.get_columns(table)]

    def _page(self, limit: int | None, offset: int) -> tuple[int, int]:
        page_size = self.settings.default_page_size if limit is None else limit
        if page_size < 1:
            raise UnsupportedQuery(message=f"limit must be positive, got {limit}")
        if offset < 0:
            raise UnsupportedQuery(message=f"offset must not be negative, got {offset}")
        return page_size, offset

    def _check_payload(self, table: str, data: Mapping[str, Any], columns: list[str]) -> None:
        unknown = sorted(key for key in data if key not in columns)
        if unknown:
            raise ValidationFailed(
                message=f"Unknown columns for table '{table}': {', '.join(unknown)}",
                errors=[f"Column '{name}' does not exist" for name in unknown],
            )

    # Reads

    def count_rows(self, table: str, filters: RowFilters | None = None) -> int:
        resolved = self._table(table)
        where_sql, params = where_clause(filters)
        row = (
            self.storage.prepare(f"SELECT COUNT(*) AS cnt FROM {quote_identifier(resolved)}{where_sql}")
            .bind(*params)
            .first()
        )
        return int(row["cnt"]) if row else 0

    def get_table_data(
        self,
        table: str,
        limit: int | None = None,
        offset: int = 0,
        filters: RowFilters | None = None,
    ) -> TableDataResult:
        return self.get_table_data_with_sort(table, None, "DESC", limit, offset, filters)

    def get_table_data_with_sort(
        self,
        table: str,
        sort_by: str | None = None,
        sort_order: str = "DESC",
        limit: int | None = None,
        offset: int = 0,
        filters: RowFilters | None = None,
    ) -> TableDataResult:
        """
        Fetch one page of rows ordered by ``sort_by``.

        Args:
            table: User table name
            sort_by: Column to order by; defaults to created_at, else insertion order
            sort_order: ASC or DESC
            limit: Page size (default from settings)
            offset: Rows to skip
            filters: Equality filters AND-ed into the query

        Raises:
            UnsupportedQuery: On an unknown sort column, bad sort order or bad paging
        """
        resolved = self._table(table)
        page_size, offset = self._page(limit, offset)
        order = sort_order.upper()
        if order not in ("ASC", "DESC"):
            raise UnsupportedQuery(message=f"Unsupported sort order: {sort_order!r}")

        columns = self._column_names(resolved)
        if sort_by is not None and sort_by not in columns:
            raise UnsupportedQuery(message=f"Cannot sort by unknown column '{sort_by}'")
        if sort_by is None:
            order_sql = (
                f"{quote_identifier(CREATED_AT_COLUMN)} {order}, rowid {order}"
                if CREATED_AT_COLUMN in columns
                else f"rowid {order}"
            )
        else:
            order_sql = f"{quote_identifier(sort_by)} {order}, rowid {order}"

        where_sql, params = where_clause(filters)
        table_sql = quote_identifier(resolved)
        rows = (
            self.storage.prepare(
                f"SELECT * FROM {table_sql}{where_sql} ORDER BY {order_sql} LIMIT ? OFFSET ?"
            )
            .bind(*params, page_size, offset)
            .all()
            .rows
        )
        total_row = (
            self.storage.prepare(f"SELECT COUNT(*) AS cnt FROM {table_sql}{where_sql}")
            .bind(*params)
            .first()
        )
        total = int(total_row["cnt"]) if total_row else 0
        return TableDataResult(data=rows, total=total, limit=page_size, offset=offset)

    def get_record_by_id(
        self, table: str, record_id: str, filters: RowFilters | None = None
    ) -> Row | None:
        resolved = self._table(table)
        where_sql, params = where_clause(filters, leading="AND")
        return (
            self.storage.prepare(
                f"SELECT * FROM {quote_identifier(resolved)} "
                f"WHERE {quote_identifier(ID_COLUMN)} = ?{where_sql}"
            )
            .bind(record_id, *params)
            .first()
        )

    # Writes

    def create_record(self, table: str, data: Mapping[str, Any]) -> Row:
        """Insert a row; ``id`` is generated when absent. Returns the stored row."""
        record_id = data.get(ID_COLUMN) or new_record_id()
        return self.create_record_with_id(table, str(record_id), data)

    def create_record_with_id(self, table: str, record_id: str, data: Mapping[str, Any]) -> Row:
        resolved = self._table(table)
        columns = self._column_names(resolved)
        self._check_payload(resolved, data, columns)

        payload: dict[str, Any] = {key: value for key, value in data.items() if key != ID_COLUMN}
        payload = {ID_COLUMN: record_id, **payload}
        now = utc_timestamp()
        for stamp in (CREATED_AT_COLUMN, UPDATED_AT_COLUMN):
            if stamp in columns:
                payload.setdefault(stamp, now)

        names = list(payload)
        self.storage.prepare(
            f"INSERT INTO {quote_identifier(resolved)} ({column_list(names)}) "
            f"VALUES ({placeholders(len(names))})"
        ).bind(*payload.values()).run()
        logger.debug("Inserted record %s into %s", record_id, resolved)

        created = self.get_record_by_id(resolved, record_id)
        if created is None:
            raise NotFound(message=f"Record '{record_id}' vanished after insert into '{resolved}'")
        return created

    def update_record(
        self,
        table: str,
        record_id: str,
        data: Mapping[str, Any],
        filters: RowFilters | None = None,
    ) -> Row:
        """
        Update one row; ``id`` and ``created_at`` in the payload are ignored.

        Raises:
            ValidationFailed: On unknown columns or nothing to update
            NotFound: If no row matched the id (and filters)
        """
        resolved = self._table(table)
        columns = self._column_names(resolved)
        self._check_payload(resolved, data, columns)

        payload = {
            key: value for key, value in data.items() if key not in (ID_COLUMN, CREATED_AT_COLUMN)
        }
        if UPDATED_AT_COLUMN in columns:
            payload[UPDATED_AT_COLUMN] = utc_timestamp()
        if not payload:
            raise ValidationFailed(message="No fields to update")

        assignments = ", ".join(f"{quote_identifier(name)} = ?" for name in payload)
        where_sql, params = where_clause(filters, leading="AND")
        result = (
            self.storage.prepare(
                f"UPDATE {quote_identifier(resolved)} SET {assignments} "
                f"WHERE {quote_identifier(ID_COLUMN)} = ?{where_sql}"
            )
            .bind(*payload.values(), record_id, *params)
            .run()
        )
        if result.changes == 0:
            raise NotFound(message=f"Record '{record_id}' not found in table '{resolved}'")

        updated = self.get_record_by_id(resolved, record_id)
        if updated is None:
            raise NotFound(message=f"Record '{record_id}' not found in table '{resolved}'")
        return updated

    def delete_record(self, table: str, record_id: str, filters: RowFilters | None = None) -> None:
        resolved = self._table(table)
        where_sql, params = where_clause(filters, leading="AND")
        result = (
            self.storage.prepare(
                f"DELETE FROM {quote_identifier(resolved)} "
                f"WHERE {quote_identifier(ID_COLUMN)} = ?{where_sql}"
            )
            .bind(record_id, *params)
            .run()
        )
        if result.changes == 0:
            raise NotFound(message=f"Record '{record_id}' not found in table '{resolved}'")
