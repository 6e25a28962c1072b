"""
Column changes and the strategies that apply them

A column change is a small tagged model. ``apply_change`` derives the new
``TableSchema`` from the current one without touching storage; strategies turn
a change into statements. ``ColumnChangeApplier`` picks the direct ALTER form
when the engine supports it and falls back to table recreation otherwise.
"""

import logging
from typing import Annotated, Literal, Protocol, Union

from pydantic import BaseModel, Field

from tablex.core.settings import StorageCapabilities
from tablex.domain.errors import DuplicateName, NotFound, ValidationFailed
from tablex.domain.models import (
    ColumnChangeRequest,
    ColumnDefinition,
    ColumnDescriptor,
    ForeignKeyDescriptor,
    IndexDescriptor,
    TableSchema,
)
from tablex.storage.port import StoragePort

from .ddl import ID_COLUMN, IMPLICIT_COLUMNS, DDLGenerator, normalize_type

logger = logging.getLogger(__name__)

# ADD COLUMN only accepts constant defaults
_NON_CONSTANT_KEYWORDS = frozenset({"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME"})


class AddColumnChange(BaseModel):
    kind: Literal["add_column"] = "add_column"
    table: str
    column: ColumnDefinition


class RenameColumnChange(BaseModel):
    kind: Literal["rename_column"] = "rename_column"
    table: str
    old_name: str
    new_name: str


class DropColumnChange(BaseModel):
    kind: Literal["drop_column"] = "drop_column"
    table: str
    column: str


class ModifyColumnChange(BaseModel):
    kind: Literal["modify_column"] = "modify_column"
    table: str
    column: str
    request: ColumnChangeRequest


ColumnChange = Annotated[
    Union[AddColumnChange, RenameColumnChange, DropColumnChange, ModifyColumnChange],
    Field(discriminator="kind"),
]


def _require_column(schema: TableSchema, name: str) -> ColumnDescriptor:
    column = schema.column(name)
    if column is None:
        raise NotFound(message=f"Column '{name}' does not exist in table '{schema.name}'")
    return column


def _ensure_name_free(schema: TableSchema, name: str) -> None:
    if name.lower() in IMPLICIT_COLUMNS:
        raise DuplicateName(message=f"Column '{name}' is created automatically for every table")
    if any(existing.lower() == name.lower() for existing in schema.column_names):
        raise DuplicateName(message=f"Column '{name}' already exists in table '{schema.name}'")


def _ensure_not_implicit(name: str, action: str) -> None:
    if name.lower() in IMPLICIT_COLUMNS:
        raise ValidationFailed(
            message=f"Cannot {action} built-in column '{name}'",
            errors=[f"'{name}' is required on every table"],
        )


def _add_column(schema: TableSchema, change: AddColumnChange) -> TableSchema:
    definition = change.column
    _ensure_name_free(schema, definition.name)
    if not definition.nullable and definition.default is None:
        raise ValidationFailed(
            message=f"Cannot add NOT NULL column '{definition.name}' without a default value",
            errors=["NOT NULL columns added to an existing table need a default"],
        )

    next_ordinal = max((column.ordinal for column in schema.columns), default=-1) + 1
    columns = [
        *schema.columns,
        ColumnDescriptor(
            ordinal=next_ordinal,
            name=definition.name,
            type=normalize_type(definition.type),
            nullable=definition.nullable,
            default=definition.default,
            unique=definition.unique,
        ),
    ]
    foreign_keys = list(schema.foreign_keys)
    if definition.foreign_key is not None:
        foreign_keys.append(
            ForeignKeyDescriptor(
                column=definition.name,
                ref_table=definition.foreign_key.table,
                ref_column=definition.foreign_key.column,
            )
        )
    return schema.model_copy(update={"columns": columns, "foreign_keys": foreign_keys})


def _rename_column(schema: TableSchema, change: RenameColumnChange) -> TableSchema:
    _require_column(schema, change.old_name)
    _ensure_not_implicit(change.old_name, "rename")
    _ensure_name_free(schema, change.new_name)

    def renamed(name: str) -> str:
        return change.new_name if name == change.old_name else name

    columns = [
        column.model_copy(update={"name": renamed(column.name)}) for column in schema.columns
    ]
    foreign_keys = [
        foreign_key.model_copy(update={"column": renamed(foreign_key.column)})
        for foreign_key in schema.foreign_keys
    ]
    indexes = [
        index.model_copy(update={"columns": [renamed(name) for name in index.columns]})
        for index in schema.indexes
    ]
    return schema.model_copy(
        update={"columns": columns, "foreign_keys": foreign_keys, "indexes": indexes}
    )


def _drop_column(schema: TableSchema, change: DropColumnChange) -> TableSchema:
    target = _require_column(schema, change.column)
    _ensure_not_implicit(change.column, "drop")
    if target.primary_key:
        raise ValidationFailed(message=f"Cannot drop primary key column '{change.column}'")

    return schema.model_copy(
        update={
            "columns": [c for c in schema.columns if c.name != change.column],
            "foreign_keys": [fk for fk in schema.foreign_keys if fk.column != change.column],
            "indexes": [ix for ix in schema.indexes if change.column not in ix.columns],
        }
    )


def _modify_column(schema: TableSchema, change: ModifyColumnChange) -> TableSchema:
    target = _require_column(schema, change.column)
    request = change.request
    if change.column.lower() == ID_COLUMN:
        raise ValidationFailed(message=f"Cannot modify built-in column '{change.column}'")

    updates: dict[str, object] = {}
    if request.type is not None:
        updates["type"] = normalize_type(request.type)
    if request.not_null is not None:
        updates["nullable"] = not request.not_null
    columns = [
        column.model_copy(update=updates) if column.name == target.name else column
        for column in schema.columns
    ]

    foreign_keys = list(schema.foreign_keys)
    if request.remove_foreign_key or request.foreign_key is not None:
        if request.remove_foreign_key and not any(fk.column == target.name for fk in foreign_keys):
            raise ValidationFailed(
                message=f"Column '{target.name}' has no foreign key to remove",
            )
        foreign_keys = [fk for fk in foreign_keys if fk.column != target.name]
    if request.foreign_key is not None:
        foreign_keys.append(
            ForeignKeyDescriptor(
                column=target.name,
                ref_table=request.foreign_key.table,
                ref_column=request.foreign_key.column,
            )
        )
    return schema.model_copy(update={"columns": columns, "foreign_keys": foreign_keys})


_APPLY_HANDLERS = {
    "add_column": _add_column,
    "rename_column": _rename_column,
    "drop_column": _drop_column,
    "modify_column": _modify_column,
}


def apply_change(schema: TableSchema, change: ColumnChange) -> TableSchema:
    """Derive the schema that results from ``change``; the input is left untouched.

    Raises:
        NotFound: If the targeted column does not exist
        DuplicateName: If an added/renamed column collides with an existing one
        ValidationFailed: If the change targets a built-in column or is otherwise invalid
    """
    return _APPLY_HANDLERS[change.kind](schema, change)  # type: ignore[operator]


def index_statement(ddl: DDLGenerator, table: str, index: IndexDescriptor, renamed: bool) -> str:
    """Statement that re-creates an explicit index after its table was rebuilt."""
    if index.sql and not renamed:
        return index.sql
    return ddl.create_index(index.name, table, index.columns, unique=index.unique)


class ColumnChangeStrategy(Protocol):
    """Common interface of the direct and recreation strategies"""

    name: str

    def supports(self, change: ColumnChange) -> bool: ...

    def apply(self, change: ColumnChange) -> None: ...


class DirectAlterStrategy:
    """Applies a change with in-place ALTER statements when the engine allows it"""

    name = "direct"

    def __init__(self, storage: StoragePort, ddl: DDLGenerator, capabilities: StorageCapabilities) -> None:
        self.storage = storage
        self.ddl = ddl
        self.capabilities = capabilities

    def supports(self, change: ColumnChange) -> bool:
        if isinstance(change, AddColumnChange):
            column = change.column
            constant_default = column.default is None or (
                column.default.kind != "expression"
                and column.default.value not in _NON_CONSTANT_KEYWORDS
            )
            return (
                self.capabilities.alter_add_column
                and column.foreign_key is None
                and not column.unique
                and constant_default
            )
        if isinstance(change, RenameColumnChange):
            return self.capabilities.alter_rename_column
        if isinstance(change, DropColumnChange):
            return self.capabilities.alter_drop_column
        request = change.request
        return (
            self.capabilities.alter_column_definition
            and request.foreign_key is None
            and not request.remove_foreign_key
        )

    def statements(self, change: ColumnChange) -> list[str]:
        if isinstance(change, AddColumnChange):
            return [self.ddl.add_column(change.table, change.column)]
        if isinstance(change, RenameColumnChange):
            return [self.ddl.rename_column(change.table, change.old_name, change.new_name)]
        if isinstance(change, DropColumnChange):
            return [self.ddl.drop_column(change.table, change.column)]
        return self.ddl.alter_column(
            change.table, change.column, change.request.type, change.request.not_null
        )

    def apply(self, change: ColumnChange) -> None:
        statements = self.statements(change)
        logger.debug("Applying %s on %s in place: %s", change.kind, change.table, statements)
        self.storage.batch([self.storage.prepare(sql) for sql in statements])


class ColumnChangeApplier:
    """Routes each change to the first strategy that supports it"""

    def __init__(self, strategies: list[ColumnChangeStrategy]) -> None:
        if not strategies:
            raise ValueError("At least one column change strategy is required")
        self.strategies = strategies

    def strategy_for(self, change: ColumnChange) -> ColumnChangeStrategy:
        for strategy in self.strategies:
            if strategy.supports(change):
                return strategy
        raise ValidationFailed(message=f"No strategy can apply {change.kind} on '{change.table}'")

    def apply(self, change: ColumnChange) -> str:
        """Apply ``change`` and return the name of the strategy that applied it."""
        strategy = self.strategy_for(change)
        logger.info("Applying %s on '%s' via %s strategy", change.kind, change.table, strategy.name)
        strategy.apply(change)
        return strategy.name
