"""
Search Index Resolver

Restricts search to columns covered by a single-column index and builds
parameterized, operator-constrained predicates over them.
"""

from typing import Any

from tablex.core.settings import CoreSettings
from tablex.core.sql_utils import quote_identifier
from tablex.domain.errors import UnsupportedQuery
from tablex.domain.models import ColumnDescriptor, ColumnType, SearchPredicate
from tablex.domain.results import SearchableColumn, SearchResult
from tablex.schema.catalog import SchemaCatalog
from tablex.schema.ddl import CREATED_AT_COLUMN, NameValidator
from tablex.storage.port import StoragePort

from .records import RowFilters, where_clause

_OPERATOR_SQL: dict[str, str] = {
    "eq": "=",
    "ne": "!=",
    "lt": "<",
    "le": "<=",
    "gt": ">",
    "ge": ">=",
    "is_null": "IS NULL",
    "is_not_null": "IS NOT NULL",
}

_NULL_OPERATORS = frozenset({"is_null", "is_not_null"})
_EQUALITY_OPERATORS = frozenset({"eq"}) | _NULL_OPERATORS

ALLOWED_OPERATORS: dict[ColumnType, frozenset[str]] = {
    ColumnType.TEXT: _EQUALITY_OPERATORS,
    ColumnType.BOOLEAN: _EQUALITY_OPERATORS,
    ColumnType.INTEGER: frozenset(_OPERATOR_SQL),
    ColumnType.REAL: frozenset(_OPERATOR_SQL),
    ColumnType.BLOB: _NULL_OPERATORS,
    ColumnType.OTHER: _NULL_OPERATORS,
}

_TRUE_WORDS = frozenset({"true", "1", "yes"})
_FALSE_WORDS = frozenset({"false", "0", "no"})


def _coerce_value(column: ColumnDescriptor, value: Any) -> Any:
    """Convert a predicate value to what the column family compares against."""
    family = column.type_family
    if family in (ColumnType.INTEGER, ColumnType.REAL):
        if isinstance(value, bool):
            raise UnsupportedQuery(message=f"Column '{column.name}' expects a number, got {value!r}")
        if isinstance(value, int | float):
            return value
        try:
            return int(value) if family == ColumnType.INTEGER else float(value)
        except (TypeError, ValueError):
            pass
        try:
            return float(value)
        except (TypeError, ValueError) as error:
            raise UnsupportedQuery(
                message=f"Column '{column.name}' expects a number, got {value!r}"
            ) from error
    if family == ColumnType.BOOLEAN:
        if isinstance(value, bool):
            return int(value)
        word = str(value).strip().lower()
        if word in _TRUE_WORDS:
            return 1
        if word in _FALSE_WORDS:
            return 0
        raise UnsupportedQuery(message=f"Column '{column.name}' expects a boolean, got {value!r}")
    return str(value)


class SearchIndexResolver:
    """Resolves searchable columns and runs indexed searches"""

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

    def _indexed_columns(self, table: str) -> list[ColumnDescriptor]:
        indexed = {
            index.columns[0]
            for index in self.catalog.get_indexes(table)
            if len(index.columns) == 1 and not index.has_expression
        }
        return [column for column in self.catalog.get_columns(table) if column.name in indexed]

    def get_searchable_columns(self, table: str) -> list[SearchableColumn]:
        """Columns covered by a single-column index (explicit or automatic), in column order."""
        self.validator.validate_table_name(table)
        resolved = self.catalog.require_table(table)
        return [
            SearchableColumn(name=column.name, type=column.type)
            for column in self._indexed_columns(resolved)
        ]

    def build_conditions(
        self, table: str, predicates: list[SearchPredicate]
    ) -> tuple[list[str], list[Any]]:
        """
        Translate predicates into SQL conditions and parameters.

        Raises:
            UnsupportedQuery: On a non-indexed column, an operator the column type does
                not allow, a missing value or a value of the wrong kind
        """
        searchable = {column.name: column for column in self._indexed_columns(table)}
        conditions: list[str] = []
        params: list[Any] = []
        for predicate in predicates:
            column = searchable.get(predicate.column)
            if column is None:
                raise UnsupportedQuery(
                    message=f"Column '{predicate.column}' is not indexed and cannot be searched"
                )
            allowed = ALLOWED_OPERATORS[column.type_family]
            if predicate.operator not in allowed:
                raise UnsupportedQuery(
                    message=(
                        f"Operator '{predicate.operator}' is not supported for "
                        f"{column.type_family} column '{column.name}'"
                    )
                )
            column_sql = quote_identifier(column.name)
            operator_sql = _OPERATOR_SQL[predicate.operator]
            if predicate.operator in _NULL_OPERATORS:
                conditions.append(f"{column_sql} {operator_sql}")
                continue
            if predicate.value is None:
                raise UnsupportedQuery(
                    message=f"Operator '{predicate.operator}' on '{column.name}' needs a value"
                )
            conditions.append(f"{column_sql} {operator_sql} ?")
            params.append(_coerce_value(column, predicate.value))
        return conditions, params

    def search_records(
        self,
        table: str,
        predicates: list[SearchPredicate],
        offset: int = 0,
        limit: int | None = None,
        owner_filter: RowFilters | None = None,
    ) -> SearchResult:
        """
        Search a table on its indexed columns.

        Args:
            table: User table name
            predicates: Conditions AND-ed together; empty means an unfiltered page
            offset: Rows to skip
            limit: Page size (default from settings)
            owner_filter: Extra equality filter applied by the access-control gate

        Returns:
            SearchResult with ``has_more`` when rows remain past this page
        """
        self.validator.validate_table_name(table)
        resolved = self.catalog.require_table(table)
        page_size = self.settings.default_page_size if limit is None else limit
        if page_size < 1 or offset < 0:
            raise UnsupportedQuery(message=f"Invalid paging: limit={limit} offset={offset}")

        conditions, params = self.build_conditions(resolved, predicates)
        owner_sql, owner_params = where_clause(owner_filter, leading="")
        if owner_sql:
            conditions.append(owner_sql.strip())
            params.extend(owner_params)
        where_sql = f" WHERE {' AND '.join(conditions)}" if conditions else ""

        column_names = {column.name for column in self.catalog.get_columns(resolved)}
        order_sql = (
            f"{quote_identifier(CREATED_AT_COLUMN)} DESC, rowid DESC"
            if CREATED_AT_COLUMN in column_names
            else "rowid"
        )
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
        return SearchResult(
            data=rows,
            total=total,
            limit=page_size,
            offset=offset,
            has_more=offset + len(rows) < total,
        )
