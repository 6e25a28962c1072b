"""
Integration tests for schema reflection against a live SQLite database.
"""

import pytest

from tablex.domain.errors import NotFound
from tablex.domain.models import ColumnDefault, ColumnDefinition, ForeignKeyDescriptor, ForeignKeyTarget
from tablex.manager import TableManager


@pytest.fixture
def shop(quiet_manager: TableManager) -> TableManager:
    quiet_manager.create_table(
        "customers",
        [
            ColumnDefinition(name="name", type="TEXT", nullable=False),
            ColumnDefinition(name="email", type="VARCHAR(255)", unique=True),
        ],
    )
    quiet_manager.create_table(
        "orders",
        [
            ColumnDefinition(
                name="customer_id", type="TEXT", foreign_key=ForeignKeyTarget(table="customers", column="id")
            ),
            ColumnDefinition(name="status", type="TEXT", default="open"),
            ColumnDefinition(name="amount", type="REAL", default=0),
        ],
        access_policy="public",
    )
    return quiet_manager


class TestTables:
    def test_list_tables_marks_system_and_user(self, shop: TableManager) -> None:
        tables = {table.name: table for table in shop.catalog.list_tables()}

        for name in ("schema_snapshots", "schema_snapshot_counter", "table_policies"):
            assert tables[name].kind == "system"
            assert tables[name].access_policy == "system"
        assert tables["customers"].kind == "user"
        assert tables["customers"].access_policy == "private"
        assert tables["orders"].access_policy == "public"
        assert tables["orders"].sql.startswith('CREATE TABLE "orders"')

    def test_user_table_names(self, shop: TableManager) -> None:
        assert shop.catalog.user_table_names() == ["customers", "orders"]

    def test_resolve_is_case_insensitive(self, shop: TableManager) -> None:
        assert shop.catalog.resolve_table("CUSTOMERS") == "customers"
        assert shop.catalog.resolve_table("ghosts") is None
        with pytest.raises(NotFound):
            shop.catalog.require_table("ghosts")

    def test_protected_tables_report_system_policy(self, shop: TableManager) -> None:
        assert shop.catalog.get_access_policy("admins") == "system"
        assert shop.catalog.get_access_policy("Table_Policies") == "system"


class TestColumns:
    def test_columns_in_ordinal_order(self, shop: TableManager) -> None:
        columns = shop.catalog.get_columns("customers")
        assert [column.name for column in columns] == [
            "id",
            "name",
            "email",
            "owner_id",
            "created_at",
            "updated_at",
        ]
        assert [column.ordinal for column in columns] == list(range(6))

    def test_column_flags_and_defaults(self, shop: TableManager) -> None:
        columns = {column.name: column for column in shop.catalog.get_columns("customers")}
        assert columns["id"].primary_key
        assert columns["id"].default == ColumnDefault(kind="expression", value="lower(hex(randomblob(16)))")
        assert columns["name"].nullable is False
        assert columns["email"].unique is True
        assert columns["email"].type == "VARCHAR(255)"
        assert columns["name"].unique is False
        assert columns["created_at"].default == ColumnDefault(kind="keyword", value="CURRENT_TIMESTAMP")

        orders = {column.name: column for column in shop.catalog.get_columns("orders")}
        assert orders["status"].default == ColumnDefault(kind="string", value="open")
        assert orders["amount"].default == ColumnDefault(kind="number", value="0")

    def test_foreign_keys(self, shop: TableManager) -> None:
        assert shop.catalog.get_foreign_keys("orders") == [
            ForeignKeyDescriptor(column="customer_id", ref_table="customers", ref_column="id")
        ]
        assert shop.catalog.get_foreign_keys("customers") == []

    def test_automatic_indexes(self, shop: TableManager) -> None:
        indexes = shop.catalog.get_indexes("customers")
        origins = {index.origin: index for index in indexes}
        assert origins["pk"].columns == ["id"]
        assert origins["u"].columns == ["email"]
        assert origins["u"].unique
        assert not any(index.is_explicit for index in indexes)

    def test_explicit_index_keeps_definition(self, shop: TableManager) -> None:
        shop.create_index("orders", ["status", "amount"], index_name="idx_orders_status_amount")
        index = next(ix for ix in shop.catalog.get_indexes("orders") if ix.is_explicit)
        assert index.name == "idx_orders_status_amount"
        assert index.columns == ["status", "amount"]
        assert index.sql == 'CREATE INDEX "idx_orders_status_amount" ON "orders" ("status", "amount")'

    def test_table_schema(self, shop: TableManager) -> None:
        schema = shop.catalog.get_table_schema("ORDERS")
        assert schema.name == "orders"
        assert "customer_id" in schema.column_names
        assert schema.foreign_keys[0].ref_table == "customers"

    def test_count_rows(self, shop: TableManager) -> None:
        shop.create_record("customers", {"name": "Ada"})
        assert shop.catalog.count_rows("customers") == 1
        assert shop.catalog.count_rows("orders") == 0
