"""Schema management: DDL text, catalog reflection, validation and column changes."""

from .catalog import SchemaCatalog
from .changes import (
    AddColumnChange,
    ColumnChange,
    ColumnChangeApplier,
    ColumnChangeStrategy,
    DirectAlterStrategy,
    DropColumnChange,
    ModifyColumnChange,
    RenameColumnChange,
    apply_change,
)
from .ddl import IMPLICIT_COLUMNS, DDLGenerator, NameValidator, normalize_type
from .dependency_graph import TableDependencyGraph
from .recreation import TableRecreationEngine
from .validator import ColumnChangeValidator

__all__ = [
    "IMPLICIT_COLUMNS",
    "AddColumnChange",
    "ColumnChange",
    "ColumnChangeApplier",
    "ColumnChangeStrategy",
    "ColumnChangeValidator",
    "DDLGenerator",
    "DirectAlterStrategy",
    "DropColumnChange",
    "ModifyColumnChange",
    "NameValidator",
    "RenameColumnChange",
    "SchemaCatalog",
    "TableDependencyGraph",
    "TableRecreationEngine",
    "apply_change",
    "normalize_type",
]
