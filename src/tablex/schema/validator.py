"""
Column Change Validator

Read-only pre-flight checks run before a destructive column change. Each
requested aspect of the change (NOT NULL, foreign key, type) is probed against
the live rows and reported with the number of rows that would violate it.
"""

from typing import cast

from tablex.core.sql_utils import quote_identifier
from tablex.domain.errors import NotFound
from tablex.domain.models import ColumnChangeRequest, ColumnType, TableSchema, type_family
from tablex.domain.results import ValidationResult
from tablex.storage.port import StoragePort

from .catalog import SchemaCatalog
from .ddl import NameValidator, normalize_type

Probe = tuple[list[str], int]

# Dispatch map: change field -> method name (method takes self, schema, column, change)
_PROBE_HANDLERS: dict[str, str] = {
    "not_null": "_probe_not_null",
    "foreign_key": "_probe_foreign_key",
    "type": "_probe_type_change",
}

# Text that survives conversion to INTEGER: optional sign, digits only
_INTEGER_TEXT_CHECK = (
    "(ltrim(trim({col}), '+-') GLOB '[0-9]*' AND ltrim(trim({col}), '+-') NOT GLOB '*[^0-9]*')"
)
# Text that survives conversion to REAL: digits with optional point and exponent
_REAL_TEXT_CHECK = (
    "(ltrim(trim({col}), '+-') GLOB '*[0-9]*' "
    "AND ltrim(trim({col}), '+-') NOT GLOB '*[^0-9.eE+-]*')"
)


class ColumnChangeValidator:
    """Probes live data for rows a column change would break"""

    def __init__(self, storage: StoragePort, catalog: SchemaCatalog, validator: NameValidator) -> None:
        """Initialize column change validator

        Args:
            storage: Storage port used for the read-only probes
            catalog: Catalog used to resolve tables and columns
            validator: Name validator guarding referenced tables
        """
        self.storage = storage
        self.catalog = catalog
        self.validator = validator

    def validate(self, table: str, column: str, change: ColumnChangeRequest) -> ValidationResult:
        """Validate a requested column change

        Args:
            table: Table holding the column
            column: Column to change
            change: Requested change

        Returns:
            ValidationResult listing every failing probe

        Raises:
            NotFound: If the table or column does not exist
        """
        schema = self.catalog.get_table_schema(table)
        if schema.column(column) is None:
            raise NotFound(message=f"Column '{column}' does not exist in table '{schema.name}'")

        errors: list[str] = []
        conflicting_rows = 0
        for field_name, method_name in _PROBE_HANDLERS.items():
            if getattr(change, field_name) in (None, False):
                continue
            probe_errors, probe_rows = cast(
                Probe, getattr(self, method_name)(schema, column, change)
            )
            errors.extend(probe_errors)
            conflicting_rows += probe_rows

        return ValidationResult(
            valid=not errors,
            errors=errors,
            conflicting_rows=conflicting_rows,
        )

    def _count(self, sql: str) -> int:
        row = self.storage.prepare(sql).bind().first()
        return int(row["cnt"]) if row and row["cnt"] is not None else 0

    def _probe_not_null(self, schema: TableSchema, column: str, change: ColumnChangeRequest) -> Probe:
        """Rows holding NULL in the column"""
        del change
        null_count = self._count(
            f"SELECT COUNT(*) AS cnt FROM {quote_identifier(schema.name)} "
            f"WHERE {quote_identifier(column)} IS NULL"
        )
        if null_count == 0:
            return [], 0
        return [
            f"Cannot add NOT NULL constraint: {null_count} rows have NULL values in column '{column}'"
        ], null_count

    def _probe_foreign_key(self, schema: TableSchema, column: str, change: ColumnChangeRequest) -> Probe:
        """Referenced table/column must exist; count orphan values"""
        target = change.foreign_key
        assert target is not None
        if self.validator.is_protected(target.table):
            return [f"Cannot reference protected system table '{target.table}'"], 0

        ref_table = self.catalog.resolve_table(target.table)
        if ref_table is None:
            return [f"Referenced table '{target.table}' does not exist"], 0
        ref_columns = {c.name for c in self.catalog.get_columns(ref_table)}
        if target.column not in ref_columns:
            return [f"Referenced column '{target.column}' does not exist in table '{ref_table}'"], 0

        col = quote_identifier(column)
        orphan_count = self._count(
            f"SELECT COUNT(*) AS cnt FROM {quote_identifier(schema.name)} t1 "
            f"WHERE t1.{col} IS NOT NULL AND NOT EXISTS ("
            f"SELECT 1 FROM {quote_identifier(ref_table)} t2 "
            f"WHERE t2.{quote_identifier(target.column)} = t1.{col})"
        )
        if orphan_count == 0:
            return [], 0
        return [
            f"Cannot add foreign key constraint: {orphan_count} rows reference non-existent "
            f"values in '{ref_table}.{target.column}'"
        ], orphan_count

    def _probe_type_change(self, schema: TableSchema, column: str, change: ColumnChangeRequest) -> Probe:
        """Best-effort count of values that would not convert to a numeric type"""
        assert change.type is not None
        new_type = normalize_type(change.type)
        current = schema.column(column)
        if current is not None and current.type.upper() == new_type:
            return [], 0

        family = type_family(new_type)
        col = quote_identifier(column)
        if family == ColumnType.INTEGER:
            safe = (
                f"typeof({col}) = 'integer' "
                f"OR (typeof({col}) = 'real' AND {col} = CAST({col} AS INTEGER)) "
                f"OR (typeof({col}) = 'text' AND {_INTEGER_TEXT_CHECK.format(col=col)})"
            )
        elif family == ColumnType.REAL:
            safe = (
                f"typeof({col}) IN ('integer', 'real') "
                f"OR (typeof({col}) = 'text' AND {_REAL_TEXT_CHECK.format(col=col)})"
            )
        else:
            return [], 0

        invalid_count = self._count(
            f"SELECT COUNT(*) AS cnt FROM {quote_identifier(schema.name)} "
            f"WHERE {col} IS NOT NULL AND NOT ({safe})"
        )
        if invalid_count == 0:
            return [], 0
        return [
            f"Cannot convert to {new_type}: {invalid_count} rows contain non-numeric values "
            f"in column '{column}'"
        ], invalid_count
