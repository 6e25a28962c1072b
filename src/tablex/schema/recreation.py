"""
Table Recreation Engine

Applies column changes the engine cannot express in place. The replacement
table is generated from the structured schema, filled from the original, and
swapped in with one all-or-nothing batch:

    CREATE temp -> INSERT INTO temp SELECT ... -> DROP original
    -> ALTER temp RENAME TO original -> CREATE explicit indexes

A failing statement rolls the whole batch back and leaves the original table
untouched.
"""

import logging
import time
from collections.abc import Callable

from tablex.core.sql_utils import column_list, quote_identifier
from tablex.domain.models import TableSchema
from tablex.storage.port import Statement, StoragePort

from .catalog import SchemaCatalog
from .changes import ColumnChange, RenameColumnChange, apply_change, index_statement
from .ddl import DDLGenerator

logger = logging.getLogger(__name__)


def _millis() -> int:
    return int(time.time() * 1000)


class TableRecreationEngine:
    """Create-copy-drop-rename strategy; supports every column change"""

    name = "recreation"

    def __init__(
        self,
        storage: StoragePort,
        catalog: SchemaCatalog,
        ddl: DDLGenerator,
        clock: Callable[[], int] = _millis,
    ) -> None:
        self.storage = storage
        self.catalog = catalog
        self.ddl = ddl
        self.clock = clock

    def supports(self, change: ColumnChange) -> bool:
        del change
        return True

    def temp_table_name(self, table: str) -> str:
        return f"{table}_temp_{self.clock()}"

    def plan(self, change: ColumnChange) -> list[str]:
        """
        Build the statement list that rebuilds the table with ``change`` applied.

        Raises:
            NotFound: If the table or column does not exist
            DuplicateName: If an added/renamed column collides with an existing one
            ValidationFailed: If the change is rejected by ``apply_change``
        """
        current = self.catalog.get_table_schema(change.table)
        target = apply_change(current, change)
        return self.plan_from_schemas(current, target, change)

    def plan_from_schemas(
        self, current: TableSchema, target: TableSchema, change: ColumnChange | None = None
    ) -> list[str]:
        table = current.name
        temp_name = self.temp_table_name(table)
        statements = [
            self.ddl.create_table_from_schema(target, table_name=temp_name),
            self._copy_statement(current, target, temp_name, change),
            f"DROP TABLE {quote_identifier(table)}",
            self.ddl.rename_table(temp_name, table),
        ]

        original_columns = {index.name: index.columns for index in current.indexes}
        for index in target.indexes:
            if not index.is_explicit:
                continue
            renamed = original_columns.get(index.name) != index.columns
            statements.append(index_statement(self.ddl, table, index, renamed))
        return statements

    def _copy_statement(
        self,
        current: TableSchema,
        target: TableSchema,
        temp_name: str,
        change: ColumnChange | None,
    ) -> str:
        source = quote_identifier(current.name)
        destination = quote_identifier(temp_name)
        if current.column_names == target.column_names:
            return f"INSERT INTO {destination} SELECT * FROM {source}"

        source_for: dict[str, str] = {name: name for name in current.column_names}
        if isinstance(change, RenameColumnChange):
            source_for[change.new_name] = change.old_name
        copied = [name for name in target.column_names if name in source_for]
        return (
            f"INSERT INTO {destination} ({column_list(copied)}) "
            f"SELECT {column_list([source_for[name] for name in copied])} FROM {source}"
        )

    def apply(self, change: ColumnChange) -> None:
        statements = self.plan(change)
        logger.debug("Recreating '%s' for %s: %s", change.table, change.kind, statements)
        self.execute(statements)

    def execute(self, statements: list[str]) -> None:
        prepared: list[Statement] = [self.storage.prepare(sql) for sql in statements]
        self.storage.batch(prepared)
