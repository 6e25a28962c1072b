"""
DDL Generator

Builds CREATE/ALTER/DROP/INDEX statement text for user tables. Pure text
construction: nothing here touches storage. Every identifier is validated and
double-quoted before it is interpolated.
"""

import re

from tablex.core.settings import DEFAULT_PROTECTED_TABLES, RESERVED_PREFIXES
from tablex.core.sql_utils import is_valid_identifier, quote_identifier
from tablex.domain.errors import (
    DuplicateName,
    InvalidIdentifier,
    SystemTableProtected,
    ValidationFailed,
)
from tablex.domain.models import (
    ColumnDefault,
    ColumnDefinition,
    ColumnDescriptor,
    ForeignKeyDescriptor,
    TableSchema,
)

ALLOWED_TYPES: frozenset[str] = frozenset(
    {
        "TEXT",
        "INTEGER",
        "REAL",
        "BLOB",
        "NUMERIC",
        "VARCHAR",
        "CHAR",
        "BOOLEAN",
        "DATE",
        "DATETIME",
        "TIMESTAMP",
        "DECIMAL",
        "FLOAT",
        "DOUBLE",
    }
)

_TYPE_PATTERN = re.compile(r"^([A-Za-z]+)\s*(?:\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\))?$")

ID_COLUMN = "id"
CREATED_AT_COLUMN = "created_at"
UPDATED_AT_COLUMN = "updated_at"
IMPLICIT_COLUMNS: tuple[str, ...] = (ID_COLUMN, CREATED_AT_COLUMN, UPDATED_AT_COLUMN)

ID_DEFAULT = ColumnDefault(kind="expression", value="lower(hex(randomblob(16)))")
TIMESTAMP_DEFAULT = ColumnDefault(kind="keyword", value="CURRENT_TIMESTAMP")


def normalize_type(declared_type: str) -> str:
    """Validate a declared column type and return its canonical spelling.

    Raises:
        InvalidIdentifier: If the base type is not accepted
    """
    match = _TYPE_PATTERN.match(declared_type.strip()) if isinstance(declared_type, str) else None
    if match is None or match.group(1).upper() not in ALLOWED_TYPES:
        raise InvalidIdentifier(message=f"Unsupported column type: {declared_type!r}")
    base, size, scale = match.group(1).upper(), match.group(2), match.group(3)
    if size is None:
        return base
    if scale is None:
        return f"{base}({size})"
    return f"{base}({size},{scale})"


class NameValidator:
    """Validates identifiers and guards the protected system-table names

    The protected set is injected so different deployments (and tests) can
    supply their own without touching module state.
    """

    def __init__(self, protected_tables: frozenset[str] = DEFAULT_PROTECTED_TABLES) -> None:
        self.protected_tables = frozenset(name.lower() for name in protected_tables)

    def is_protected(self, name: str) -> bool:
        lowered = name.lower()
        return lowered in self.protected_tables or lowered.startswith(RESERVED_PREFIXES)

    def validate_identifier(self, name: str, kind: str = "table") -> None:
        if not is_valid_identifier(name):
            raise InvalidIdentifier(
                message=(
                    f"Invalid {kind} name {name!r}: must start with a letter or underscore "
                    "and contain only letters, digits and underscores"
                )
            )

    def ensure_not_protected(self, name: str) -> None:
        if self.is_protected(name):
            raise SystemTableProtected(message=f"Table '{name}' is a protected system table")

    def validate_table_name(self, name: str) -> None:
        """Identifier check first, then the protected-name check."""
        self.validate_identifier(name, "table")
        self.ensure_not_protected(name)


def implicit_columns() -> list[ColumnDescriptor]:
    """Columns every user table carries, in the order they are declared."""
    return [
        ColumnDescriptor(
            ordinal=0,
            name=ID_COLUMN,
            type="TEXT",
            nullable=False,
            default=ID_DEFAULT,
            primary_key=True,
        ),
        ColumnDescriptor(ordinal=-1, name=CREATED_AT_COLUMN, type="DATETIME", default=TIMESTAMP_DEFAULT),
        ColumnDescriptor(ordinal=-1, name=UPDATED_AT_COLUMN, type="DATETIME", default=TIMESTAMP_DEFAULT),
    ]


class DDLGenerator:
    """Generates DDL text for user tables"""

    def __init__(self, validator: NameValidator) -> None:
        self.validator = validator

    def column_definition(self, column: ColumnDefinition) -> str:
        """Render one user column as it appears inside CREATE TABLE / ADD COLUMN."""
        self.validator.validate_identifier(column.name, "column")
        parts = [quote_identifier(column.name), normalize_type(column.type)]
        if not column.nullable:
            parts.append("NOT NULL")
        if column.unique:
            parts.append("UNIQUE")
        if column.default is not None:
            parts.append(f"DEFAULT {column.default.to_sql()}")
        return " ".join(parts)

    def _descriptor_definition(self, column: ColumnDescriptor, inline_primary_key: bool) -> str:
        parts = [quote_identifier(column.name)]
        if column.type:
            parts.append(column.type)
        if column.primary_key and inline_primary_key:
            parts.append("PRIMARY KEY")
        if not column.nullable and not (column.primary_key and inline_primary_key):
            parts.append("NOT NULL")
        if column.unique and not column.primary_key:
            parts.append("UNIQUE")
        if column.default is not None:
            parts.append(f"DEFAULT {column.default.to_sql()}")
        return " ".join(parts)

    def foreign_key_clause(self, foreign_key: ForeignKeyDescriptor) -> str:
        self.validator.validate_identifier(foreign_key.ref_table, "table")
        self.validator.validate_identifier(foreign_key.ref_column, "column")
        return (
            f"FOREIGN KEY ({quote_identifier(foreign_key.column)}) "
            f"REFERENCES {quote_identifier(foreign_key.ref_table)}"
            f"({quote_identifier(foreign_key.ref_column)})"
        )

    def create_table(
        self,
        name: str,
        columns: list[ColumnDefinition],
        owner_column: str | None = None,
    ) -> str:
        """
        Build CREATE TABLE text for a new user table.

        Args:
            name: Table name
            columns: User columns in declaration order
            owner_column: Owner column appended for private tables

        Returns:
            CREATE TABLE statement (no trailing semicolon)

        Raises:
            InvalidIdentifier: On a bad table/column name or unsupported type
            SystemTableProtected: If the name is protected
            ValidationFailed: On an empty column list
            DuplicateName: On repeated names or implicit-column reuse
        """
        self.validator.validate_table_name(name)
        if not columns:
            raise ValidationFailed(message=f"Table '{name}' needs at least one column")

        seen: set[str] = set()
        for column in columns:
            self.validator.validate_identifier(column.name, "column")
            lowered = column.name.lower()
            if lowered in IMPLICIT_COLUMNS:
                raise DuplicateName(
                    message=f"Column '{column.name}' is created automatically for every table"
                )
            if owner_column is not None and lowered == owner_column.lower():
                raise DuplicateName(
                    message=f"Column '{column.name}' is reserved for row ownership on private tables"
                )
            if lowered in seen:
                raise DuplicateName(message=f"Duplicate column name '{column.name}'")
            seen.add(lowered)

        implicit = {column.name: column for column in implicit_columns()}
        lines = [self._descriptor_definition(implicit[ID_COLUMN], inline_primary_key=True)]
        lines.extend(self.column_definition(column) for column in columns)
        if owner_column is not None:
            self.validator.validate_identifier(owner_column, "column")
            lines.append(f"{quote_identifier(owner_column)} TEXT")
        lines.append(self._descriptor_definition(implicit[CREATED_AT_COLUMN], inline_primary_key=True))
        lines.append(self._descriptor_definition(implicit[UPDATED_AT_COLUMN], inline_primary_key=True))
        for column in columns:
            if column.foreign_key is not None:
                lines.append(
                    self.foreign_key_clause(
                        ForeignKeyDescriptor(
                            column=column.name,
                            ref_table=column.foreign_key.table,
                            ref_column=column.foreign_key.column,
                        )
                    )
                )

        body = ",\n  ".join(lines)
        return f"CREATE TABLE {quote_identifier(name)} (\n  {body}\n)"

    def create_table_from_schema(self, schema: TableSchema, table_name: str | None = None) -> str:
        """Build CREATE TABLE text from a structured schema (used by recreation and restore)."""
        target = table_name or schema.name
        self.validator.validate_identifier(target, "table")
        primary_keys = [column.name for column in schema.columns if column.primary_key]
        inline_primary_key = len(primary_keys) == 1

        lines = [
            self._descriptor_definition(column, inline_primary_key)
            for column in sorted(schema.columns, key=lambda column: column.ordinal)
        ]
        if len(primary_keys) > 1:
            lines.append(f"PRIMARY KEY ({', '.join(quote_identifier(n) for n in primary_keys)})")
        lines.extend(self.foreign_key_clause(foreign_key) for foreign_key in schema.foreign_keys)

        body = ",\n  ".join(lines)
        return f"CREATE TABLE {quote_identifier(target)} (\n  {body}\n)"

    def add_column(self, table: str, column: ColumnDefinition) -> str:
        self.validator.validate_table_name(table)
        return f"ALTER TABLE {quote_identifier(table)} ADD COLUMN {self.column_definition(column)}"

    def rename_column(self, table: str, old_name: str, new_name: str) -> str:
        self.validator.validate_table_name(table)
        self.validator.validate_identifier(old_name, "column")
        self.validator.validate_identifier(new_name, "column")
        return (
            f"ALTER TABLE {quote_identifier(table)} RENAME COLUMN "
            f"{quote_identifier(old_name)} TO {quote_identifier(new_name)}"
        )

    def drop_column(self, table: str, column_name: str) -> str:
        self.validator.validate_table_name(table)
        self.validator.validate_identifier(column_name, "column")
        return f"ALTER TABLE {quote_identifier(table)} DROP COLUMN {quote_identifier(column_name)}"

    def alter_column(
        self,
        table: str,
        column_name: str,
        new_type: str | None = None,
        not_null: bool | None = None,
    ) -> list[str]:
        """In-place column-definition changes for engines that support them."""
        self.validator.validate_table_name(table)
        self.validator.validate_identifier(column_name, "column")
        table_sql = quote_identifier(table)
        column_sql = quote_identifier(column_name)
        statements: list[str] = []
        if new_type is not None:
            statements.append(
                f"ALTER TABLE {table_sql} ALTER COLUMN {column_sql} TYPE {normalize_type(new_type)}"
            )
        if not_null is True:
            statements.append(f"ALTER TABLE {table_sql} ALTER COLUMN {column_sql} SET NOT NULL")
        elif not_null is False:
            statements.append(f"ALTER TABLE {table_sql} ALTER COLUMN {column_sql} DROP NOT NULL")
        return statements

    def drop_table(self, name: str) -> str:
        self.validator.validate_table_name(name)
        return f"DROP TABLE {quote_identifier(name)}"

    def rename_table(self, old_name: str, new_name: str) -> str:
        self.validator.validate_identifier(old_name, "table")
        self.validator.validate_table_name(new_name)
        return f"ALTER TABLE {quote_identifier(old_name)} RENAME TO {quote_identifier(new_name)}"

    def create_index(
        self, index_name: str, table: str, columns: list[str], unique: bool = False
    ) -> str:
        self.validator.validate_identifier(index_name, "index")
        self.validator.validate_table_name(table)
        if not columns:
            raise InvalidIdentifier(message=f"Index '{index_name}' needs at least one column")
        for column in columns:
            self.validator.validate_identifier(column, "column")
        column_sql = ", ".join(quote_identifier(column) for column in columns)
        unique_sql = "UNIQUE " if unique else ""
        return (
            f"CREATE {unique_sql}INDEX {quote_identifier(index_name)} "
            f"ON {quote_identifier(table)} ({column_sql})"
        )

    def drop_index(self, index_name: str) -> str:
        self.validator.validate_identifier(index_name, "index")
        return f"DROP INDEX {quote_identifier(index_name)}"
