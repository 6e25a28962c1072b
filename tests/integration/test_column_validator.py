"""
Integration tests for the pre-flight column change validator.
"""

import pytest

from tablex.core.settings import CoreSettings
from tablex.domain.errors import NotFound, SystemTableProtected, ValidationFailed
from tablex.domain.models import ColumnChangeRequest, ColumnDefinition, ForeignKeyTarget
from tablex.manager import TableManager
from tests.utils import RecordingStoragePort


def _people(manager: TableManager) -> TableManager:
    manager.create_table("customers", [ColumnDefinition(name="name", type="TEXT")], access_policy="public")
    manager.create_record_with_id("customers", "c1", {"name": "Ann"})
    manager.create_table(
        "people",
        [
            ColumnDefinition(name="nickname", type="TEXT"),
            ColumnDefinition(name="age", type="TEXT"),
            ColumnDefinition(name="score", type="TEXT"),
            ColumnDefinition(name="customer_ref", type="TEXT"),
        ],
        access_policy="public",
    )
    rows = [
        {"nickname": None, "age": "abc", "score": "1.5", "customer_ref": "c1"},
        {"nickname": None, "age": "12", "score": "x", "customer_ref": "zz"},
        {"nickname": "bo", "age": "3.5", "score": "2e3", "customer_ref": None},
        {"nickname": "cy", "age": "4", "score": None, "customer_ref": "c1"},
    ]
    for row in rows:
        manager.create_record("people", row)
    return manager


@pytest.fixture
def people(quiet_manager: TableManager) -> TableManager:
    return _people(quiet_manager)


class TestProbes:
    def test_not_null_counts_null_rows(self, people: TableManager) -> None:
        result = people.validate_column_changes("people", "nickname", ColumnChangeRequest(not_null=True))
        assert not result.valid
        assert result.conflicting_rows == 2
        assert result.errors == [
            "Cannot add NOT NULL constraint: 2 rows have NULL values in column 'nickname'"
        ]

    def test_dropping_not_null_needs_no_probe(self, people: TableManager) -> None:
        result = people.validate_column_changes("people", "nickname", ColumnChangeRequest(not_null=False))
        assert result.valid
        assert result.conflicting_rows == 0

    def test_integer_conversion(self, people: TableManager) -> None:
        result = people.validate_column_changes("people", "age", ColumnChangeRequest(type="INTEGER"))
        assert result.conflicting_rows == 2
        assert result.errors == [
            "Cannot convert to INTEGER: 2 rows contain non-numeric values in column 'age'"
        ]

    def test_real_conversion(self, people: TableManager) -> None:
        result = people.validate_column_changes("people", "score", ColumnChangeRequest(type="REAL"))
        assert result.conflicting_rows == 1
        assert "Cannot convert to REAL" in result.errors[0]

    def test_unchanged_or_text_type_is_valid(self, people: TableManager) -> None:
        assert people.validate_column_changes("people", "age", ColumnChangeRequest(type="text")).valid
        assert people.validate_column_changes("people", "age", ColumnChangeRequest(type="VARCHAR(10)")).valid

    def test_foreign_key_orphans(self, people: TableManager) -> None:
        result = people.validate_column_changes(
            "people",
            "customer_ref",
            ColumnChangeRequest(foreign_key=ForeignKeyTarget(table="customers", column="id")),
        )
        assert result.conflicting_rows == 1
        assert result.errors == [
            "Cannot add foreign key constraint: 1 rows reference non-existent values in 'customers.id'"
        ]

    def test_foreign_key_to_missing_table_or_column(self, people: TableManager) -> None:
        missing_table = people.validate_column_changes(
            "people",
            "customer_ref",
            ColumnChangeRequest(foreign_key=ForeignKeyTarget(table="ghosts", column="id")),
        )
        assert missing_table.errors == ["Referenced table 'ghosts' does not exist"]
        assert missing_table.conflicting_rows == 0

        missing_column = people.validate_column_changes(
            "people",
            "customer_ref",
            ColumnChangeRequest(foreign_key=ForeignKeyTarget(table="customers", column="code")),
        )
        assert not missing_column.valid

    def test_foreign_key_to_protected_table(self, people: TableManager) -> None:
        result = people.column_validator.validate(
            "people",
            "customer_ref",
            ColumnChangeRequest(foreign_key=ForeignKeyTarget(table="admins", column="id")),
        )
        assert result.errors == ["Cannot reference protected system table 'admins'"]

    def test_failures_accumulate(self, people: TableManager) -> None:
        result = people.validate_column_changes(
            "people", "age", ColumnChangeRequest(type="INTEGER", not_null=True)
        )
        assert len(result.errors) == 1
        assert result.conflicting_rows == 2

        result = people.validate_column_changes(
            "people", "nickname", ColumnChangeRequest(type="INTEGER", not_null=True)
        )
        assert len(result.errors) == 2
        assert result.conflicting_rows == 4

    def test_missing_table_or_column(self, people: TableManager) -> None:
        with pytest.raises(NotFound):
            people.validate_column_changes("ghosts", "a", ColumnChangeRequest(not_null=True))
        with pytest.raises(NotFound):
            people.validate_column_changes("people", "ghost", ColumnChangeRequest(not_null=True))

    def test_protected_table(self, people: TableManager) -> None:
        with pytest.raises(SystemTableProtected):
            people.validate_column_changes("schema_snapshots", "name", ColumnChangeRequest(not_null=True))


class TestModifyColumnGate:
    @pytest.fixture
    def recorded(self, recording_storage: RecordingStoragePort) -> TableManager:
        manager = _people(TableManager(recording_storage, settings=CoreSettings()))
        recording_storage.batches.clear()
        return manager

    def test_failed_validation_issues_no_batch(
        self, recorded: TableManager, recording_storage: RecordingStoragePort
    ) -> None:
        with pytest.raises(ValidationFailed) as excinfo:
            recorded.modify_column("people", "nickname", ColumnChangeRequest(not_null=True))

        assert excinfo.value.conflicting_rows == 2
        assert excinfo.value.errors == [
            "Cannot add NOT NULL constraint: 2 rows have NULL values in column 'nickname'"
        ]
        assert recording_storage.batches == []
        nickname = next(c for c in recorded.get_table_columns("people") if c.name == "nickname")
        assert nickname.nullable is True

    def test_empty_request(self, recorded: TableManager, recording_storage: RecordingStoragePort) -> None:
        with pytest.raises(ValidationFailed, match="No column changes"):
            recorded.modify_column("people", "nickname", ColumnChangeRequest())
        assert recording_storage.batches == []

    def test_valid_change_snapshots_then_applies(
        self, recorded: TableManager, recording_storage: RecordingStoragePort
    ) -> None:
        recorded.modify_column("people", "nickname", ColumnChangeRequest(not_null=False, type="VARCHAR(40)"))

        assert len(recording_storage.batches) == 2
        assert "INSERT INTO schema_snapshots" in recording_storage.batches[0][-1]
        assert recording_storage.batches[1][0].startswith('CREATE TABLE "people_temp_')
        nickname = next(c for c in recorded.get_table_columns("people") if c.name == "nickname")
        assert nickname.type == "VARCHAR(40)"
