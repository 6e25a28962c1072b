"""Capture of the live user-table schema as snapshot payloads."""

import base64
import hashlib
import json
from typing import Any

from pydantic import BaseModel

from tablex.core.sql_utils import quote_identifier
from tablex.domain.models import AccessPolicy, ColumnDescriptor, ForeignKeyDescriptor, TableSchema
from tablex.schema.catalog import SchemaCatalog
from tablex.storage.port import Row, StoragePort

TableRows = dict[str, list[Row]]

_BYTES_MARKER = "$bytes"


class CapturedTable(BaseModel):
    """One table as stored in ``tables_json``"""

    name: str
    sql: str
    columns: list[ColumnDescriptor]
    foreign_keys: list[ForeignKeyDescriptor] = []
    indexes: list[str] = []
    access_policy: AccessPolicy | None = None

    @classmethod
    def from_schema(
        cls, schema: TableSchema, sql: str, access_policy: AccessPolicy | None = None
    ) -> "CapturedTable":
        return cls(
            name=schema.name,
            sql=sql,
            access_policy=access_policy,
            columns=schema.columns,
            foreign_keys=schema.foreign_keys,
            indexes=[index.sql for index in schema.indexes if index.is_explicit and index.sql],
        )

    def definition_texts(self) -> list[str]:
        return [self.sql, *self.indexes]


def capture_tables(catalog: SchemaCatalog) -> list[CapturedTable]:
    """Every non-system table with columns, foreign keys and index definitions."""
    tables: list[CapturedTable] = []
    for row in catalog.list_table_rows():
        name = row["name"]
        if catalog.validator.is_protected(name):
            continue
        tables.append(
            CapturedTable.from_schema(
                catalog.get_table_schema(name), row["sql"], catalog.get_access_policy(name)
            )
        )
    return tables


def definition_texts(tables: list[CapturedTable]) -> list[str]:
    """All definition texts (tables and their indexes), sorted."""
    return sorted(text for table in tables for text in table.definition_texts())


def schema_hash(tables: list[CapturedTable]) -> str:
    """SHA-256 of the sorted definition texts joined with ``|``."""
    content = "|".join(definition_texts(tables))
    return hashlib.sha256(content.encode()).hexdigest()


def full_schema_text(tables: list[CapturedTable]) -> str:
    return ";\n".join(definition_texts(tables))


def dump_tables(tables: list[CapturedTable]) -> str:
    payload: list[dict[str, Any]] = [table.model_dump(mode="json") for table in tables]
    return json.dumps(payload, sort_keys=True)


def load_tables(tables_json: str) -> list[CapturedTable]:
    return [CapturedTable.model_validate(item) for item in json.loads(tables_json)]


def capture_rows(storage: StoragePort, tables: list[CapturedTable]) -> TableRows:
    """Every row of every captured table, keyed by table name."""
    return {
        table.name: storage.prepare(f"SELECT * FROM {quote_identifier(table.name)}").bind().all().rows
        for table in tables
    }


def _encode_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return {_BYTES_MARKER: base64.b64encode(value).decode("ascii")}
    raise TypeError(f"Cannot serialize {type(value).__name__} in snapshot data")


def _decode_object(item: dict[str, Any]) -> Any:
    if set(item) == {_BYTES_MARKER}:
        return base64.b64decode(item[_BYTES_MARKER])
    return item


def dump_rows(rows: TableRows) -> str:
    """Serialize table rows; BLOB values are stored base64-encoded."""
    return json.dumps(rows, default=_encode_value)


def load_rows(rows_json: str) -> TableRows:
    return json.loads(rows_json, object_hook=_decode_object)
