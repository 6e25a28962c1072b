"""
Unit tests for column-change derivation and strategy routing.
"""

import pytest

from tablex.core.settings import StorageCapabilities
from tablex.domain.errors import DuplicateName, NotFound, ValidationFailed
from tablex.domain.models import (
    ColumnChangeRequest,
    ColumnDefault,
    ColumnDefinition,
    ColumnDescriptor,
    ForeignKeyDescriptor,
    ForeignKeyTarget,
    IndexDescriptor,
    TableSchema,
)
from tablex.schema.changes import (
    AddColumnChange,
    ColumnChange,
    ColumnChangeApplier,
    DirectAlterStrategy,
    DropColumnChange,
    ModifyColumnChange,
    RenameColumnChange,
    apply_change,
    index_statement,
)
from tablex.schema.ddl import DDLGenerator, NameValidator, implicit_columns


def _orders_schema() -> TableSchema:
    id_column, created_at, updated_at = implicit_columns()
    return TableSchema(
        name="orders",
        columns=[
            id_column,
            ColumnDescriptor(ordinal=1, name="status", type="TEXT"),
            ColumnDescriptor(ordinal=2, name="customer_id", type="TEXT"),
            created_at.model_copy(update={"ordinal": 3}),
            updated_at.model_copy(update={"ordinal": 4}),
        ],
        foreign_keys=[ForeignKeyDescriptor(column="customer_id", ref_table="customers", ref_column="id")],
        indexes=[
            IndexDescriptor(
                name="idx_orders_status",
                table="orders",
                columns=["status"],
                sql='CREATE INDEX "idx_orders_status" ON "orders" ("status")',
            )
        ],
    )


class RecordingStrategy:
    def __init__(self, name: str, supported: bool) -> None:
        self.name = name
        self.supported = supported
        self.applied: list[ColumnChange] = []

    def supports(self, change: ColumnChange) -> bool:
        del change
        return self.supported

    def apply(self, change: ColumnChange) -> None:
        self.applied.append(change)


class TestApplyChange:
    def test_add_column_appends_with_next_ordinal(self) -> None:
        schema = _orders_schema()
        change = AddColumnChange(
            table="orders",
            column=ColumnDefinition(
                name="agent_id", type="text", foreign_key=ForeignKeyTarget(table="agents", column="id")
            ),
        )
        result = apply_change(schema, change)

        added = result.column("agent_id")
        assert added is not None
        assert added.ordinal == 5
        assert added.type == "TEXT"
        assert ForeignKeyDescriptor(column="agent_id", ref_table="agents", ref_column="id") in result.foreign_keys
        assert schema.column("agent_id") is None

    def test_add_not_null_without_default(self) -> None:
        change = AddColumnChange(
            table="orders", column=ColumnDefinition(name="qty", type="INTEGER", nullable=False)
        )
        with pytest.raises(ValidationFailed, match="without a default"):
            apply_change(_orders_schema(), change)

    @pytest.mark.parametrize("name", ["Status", "created_at"])
    def test_add_existing_name(self, name: str) -> None:
        change = AddColumnChange(table="orders", column=ColumnDefinition(name=name, type="TEXT"))
        with pytest.raises(DuplicateName):
            apply_change(_orders_schema(), change)

    def test_rename_carries_foreign_keys_and_indexes(self) -> None:
        schema = _orders_schema()
        renamed = apply_change(
            schema, RenameColumnChange(table="orders", old_name="status", new_name="state")
        )
        assert renamed.column_names == ["id", "state", "customer_id", "created_at", "updated_at"]
        assert renamed.indexes[0].columns == ["state"]

        renamed_fk = apply_change(
            schema, RenameColumnChange(table="orders", old_name="customer_id", new_name="client_id")
        )
        assert renamed_fk.foreign_keys[0].column == "client_id"

    def test_rename_missing_column(self) -> None:
        with pytest.raises(NotFound):
            apply_change(
                _orders_schema(), RenameColumnChange(table="orders", old_name="nope", new_name="x")
            )

    @pytest.mark.parametrize("column", ["id", "created_at", "updated_at"])
    def test_builtin_columns_cannot_be_dropped(self, column: str) -> None:
        with pytest.raises(ValidationFailed):
            apply_change(_orders_schema(), DropColumnChange(table="orders", column=column))

    def test_drop_removes_dependent_constraints(self) -> None:
        schema = _orders_schema()
        dropped = apply_change(schema, DropColumnChange(table="orders", column="status"))
        assert "status" not in dropped.column_names
        assert dropped.indexes == []

        dropped_fk = apply_change(schema, DropColumnChange(table="orders", column="customer_id"))
        assert dropped_fk.foreign_keys == []

    def test_modify_changes_only_the_target(self) -> None:
        schema = _orders_schema()
        modified = apply_change(
            schema,
            ModifyColumnChange(
                table="orders",
                column="status",
                request=ColumnChangeRequest(type="varchar(20)", not_null=True),
            ),
        )
        status = modified.column("status")
        assert status is not None
        assert status.type == "VARCHAR(20)"
        assert status.nullable is False
        assert modified.column("customer_id") == schema.column("customer_id")
        assert modified.foreign_keys == schema.foreign_keys

    def test_modify_replaces_and_removes_foreign_keys(self) -> None:
        schema = _orders_schema()
        replaced = apply_change(
            schema,
            ModifyColumnChange(
                table="orders",
                column="customer_id",
                request=ColumnChangeRequest(foreign_key=ForeignKeyTarget(table="clients", column="id")),
            ),
        )
        assert replaced.foreign_keys == [
            ForeignKeyDescriptor(column="customer_id", ref_table="clients", ref_column="id")
        ]

        removed = apply_change(
            schema,
            ModifyColumnChange(
                table="orders", column="customer_id", request=ColumnChangeRequest(remove_foreign_key=True)
            ),
        )
        assert removed.foreign_keys == []

    def test_remove_missing_foreign_key(self) -> None:
        with pytest.raises(ValidationFailed, match="no foreign key"):
            apply_change(
                _orders_schema(),
                ModifyColumnChange(
                    table="orders", column="status", request=ColumnChangeRequest(remove_foreign_key=True)
                ),
            )

    def test_modify_id_rejected(self) -> None:
        with pytest.raises(ValidationFailed):
            apply_change(
                _orders_schema(),
                ModifyColumnChange(table="orders", column="id", request=ColumnChangeRequest(type="INTEGER")),
            )


class TestIndexStatement:
    def test_stored_sql_reused_unless_columns_changed(self) -> None:
        ddl = DDLGenerator(NameValidator())
        index = _orders_schema().indexes[0]
        assert index_statement(ddl, "orders", index, renamed=False) == index.sql

        moved = index.model_copy(update={"columns": ["state"]})
        assert index_statement(ddl, "orders", moved, renamed=True) == (
            'CREATE INDEX "idx_orders_status" ON "orders" ("state")'
        )


class TestDirectAlterStrategy:
    def _strategy(self, **capabilities: bool) -> DirectAlterStrategy:
        return DirectAlterStrategy(
            storage=None,  # type: ignore[arg-type]
            ddl=DDLGenerator(NameValidator()),
            capabilities=StorageCapabilities(**capabilities),
        )

    def test_plain_add_is_direct(self) -> None:
        change = AddColumnChange(table="orders", column=ColumnDefinition(name="note", type="TEXT", default="-"))
        strategy = self._strategy()
        assert strategy.supports(change)
        assert strategy.statements(change) == ["ALTER TABLE \"orders\" ADD COLUMN \"note\" TEXT DEFAULT '-'"]

    @pytest.mark.parametrize(
        "column",
        [
            ColumnDefinition(name="code", type="TEXT", unique=True),
            ColumnDefinition(name="agent_id", type="TEXT", foreign_key=ForeignKeyTarget(table="agents", column="id")),
            ColumnDefinition(
                name="seen_at", type="DATETIME", default=ColumnDefault(kind="keyword", value="CURRENT_TIMESTAMP")
            ),
            ColumnDefinition(name="token", type="TEXT", default=ColumnDefault(kind="expression", value="random()")),
        ],
    )
    def test_add_forms_the_engine_refuses(self, column: ColumnDefinition) -> None:
        assert not self._strategy().supports(AddColumnChange(table="orders", column=column))

    def test_capabilities_gate_the_other_changes(self) -> None:
        rename = RenameColumnChange(table="orders", old_name="a", new_name="b")
        drop = DropColumnChange(table="orders", column="a")
        modify = ModifyColumnChange(table="orders", column="a", request=ColumnChangeRequest(not_null=True))

        default = self._strategy()
        assert not default.supports(rename)
        assert not default.supports(drop)
        assert not default.supports(modify)

        capable = self._strategy(
            alter_rename_column=True, alter_drop_column=True, alter_column_definition=True
        )
        assert capable.supports(rename)
        assert capable.supports(drop)
        assert capable.supports(modify)

    def test_foreign_key_changes_never_direct(self) -> None:
        capable = self._strategy(alter_column_definition=True)
        change = ModifyColumnChange(
            table="orders", column="a", request=ColumnChangeRequest(remove_foreign_key=True)
        )
        assert not capable.supports(change)


class TestColumnChangeApplier:
    def test_first_supporting_strategy_wins(self) -> None:
        direct = RecordingStrategy("direct", supported=False)
        recreation = RecordingStrategy("recreation", supported=True)
        change = DropColumnChange(table="orders", column="status")

        assert ColumnChangeApplier([direct, recreation]).apply(change) == "recreation"
        assert recreation.applied == [change]
        assert direct.applied == []

    def test_no_supporting_strategy(self) -> None:
        applier = ColumnChangeApplier([RecordingStrategy("direct", supported=False)])
        with pytest.raises(ValidationFailed, match="No strategy"):
            applier.apply(DropColumnChange(table="orders", column="status"))

    def test_requires_a_strategy(self) -> None:
        with pytest.raises(ValueError):
            ColumnChangeApplier([])
