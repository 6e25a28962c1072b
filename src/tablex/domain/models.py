"""
Domain Models

Descriptors for tables, columns, foreign keys and indexes as reflected from the
storage engine, the input models used to create and change them, and the caller
identity union consumed by the access-control gate.
"""

import re
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AccessPolicy = Literal["public", "private", "system"]
SnapshotType = Literal["manual", "auto", "pre_change"]
SortOrder = Literal["ASC", "DESC"]

DEFAULT_KEYWORDS = frozenset(
    {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NULL", "TRUE", "FALSE"}
)

_NUMBER_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_BLOB_PATTERN = re.compile(r"^[xX]'[0-9A-Fa-f]*'$")


class ColumnType(StrEnum):
    """Type family of a declared column type"""

    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"
    BOOLEAN = "BOOLEAN"
    BLOB = "BLOB"
    OTHER = "OTHER"


_TYPE_FAMILIES: dict[str, ColumnType] = {
    "TEXT": ColumnType.TEXT,
    "VARCHAR": ColumnType.TEXT,
    "CHAR": ColumnType.TEXT,
    "INTEGER": ColumnType.INTEGER,
    "INT": ColumnType.INTEGER,
    "BIGINT": ColumnType.INTEGER,
    "REAL": ColumnType.REAL,
    "FLOAT": ColumnType.REAL,
    "DOUBLE": ColumnType.REAL,
    "BOOLEAN": ColumnType.BOOLEAN,
    "BLOB": ColumnType.BLOB,
}


def type_family(declared_type: str) -> ColumnType:
    """Map a declared type such as ``VARCHAR(255)`` to its family."""
    base = declared_type.split("(")[0].strip().upper()
    return _TYPE_FAMILIES.get(base, ColumnType.OTHER)


class ColumnDefault(BaseModel):
    """Column default value, kept structured so it renders back unchanged

    - string: a literal string, rendered single-quoted
    - number: a numeric literal, rendered bare
    - keyword: CURRENT_TIMESTAMP and friends, rendered bare
    - expression: a function call or other expression, rendered in parentheses
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["string", "number", "keyword", "expression"]
    value: str

    @classmethod
    def from_raw(cls, raw: Any) -> "ColumnDefault | None":
        """Build a default from the engine's reflected default text."""
        if raw is None:
            return None
        if isinstance(raw, bool):
            return cls(kind="keyword", value="TRUE" if raw else "FALSE")
        if isinstance(raw, int | float):
            return cls(kind="number", value=str(raw))

        text = str(raw).strip()
        if len(text) >= 2 and text[0] == "'" and text[-1] == "'":
            return cls(kind="string", value=text[1:-1].replace("''", "'"))
        if _NUMBER_PATTERN.match(text):
            return cls(kind="number", value=text)
        if text.upper() in DEFAULT_KEYWORDS:
            return cls(kind="keyword", value=text.upper())
        if _BLOB_PATTERN.match(text):
            return cls(kind="keyword", value=text)
        if "(" in text or " " in text:
            inner = text
            while inner.startswith("(") and inner.endswith(")") and _balanced(inner[1:-1]):
                inner = inner[1:-1].strip()
            return cls(kind="expression", value=inner)
        # A bare word default is stored by the engine as a string
        return cls(kind="string", value=text)

    @classmethod
    def literal(cls, value: str | int | float | bool) -> "ColumnDefault":
        """Build a default from a Python literal supplied by a caller."""
        if isinstance(value, bool):
            return cls(kind="keyword", value="TRUE" if value else "FALSE")
        if isinstance(value, int | float):
            return cls(kind="number", value=repr(value))
        return cls(kind="string", value=value)

    def to_sql(self) -> str:
        if self.kind == "string":
            escaped = self.value.replace("'", "''")
            return f"'{escaped}'"
        if self.kind == "expression":
            return f"({self.value})"
        return self.value


def _balanced(text: str) -> bool:
    depth = 0
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


class ForeignKeyTarget(BaseModel):
    """Referenced side of a foreign key"""

    table: str
    column: str


class ForeignKeyDescriptor(BaseModel):
    """Foreign key declared on a table"""

    model_config = ConfigDict(frozen=True)

    column: str
    ref_table: str
    ref_column: str


class ColumnDescriptor(BaseModel):
    """Column as reflected from the storage engine"""

    ordinal: int
    name: str
    type: str
    nullable: bool = True
    default: ColumnDefault | None = None
    primary_key: bool = False
    unique: bool = False

    @property
    def type_family(self) -> ColumnType:
        return type_family(self.type)


class IndexDescriptor(BaseModel):
    """Index on a table (origin: c = created, u = unique constraint, pk = primary key)"""

    name: str
    table: str
    columns: list[str]
    unique: bool = False
    sql: str = ""
    origin: Literal["c", "u", "pk"] = "c"
    has_expression: bool = False

    @property
    def is_explicit(self) -> bool:
        return self.origin == "c"


class TableDescriptor(BaseModel):
    """Table listed in the catalog"""

    name: str
    kind: Literal["system", "user"]
    sql: str
    row_count: int | None = None
    access_policy: AccessPolicy


class TableSchema(BaseModel):
    """Structured schema of one table; definition text is generated from it"""

    name: str
    columns: list[ColumnDescriptor]
    foreign_keys: list[ForeignKeyDescriptor] = []
    indexes: list[IndexDescriptor] = []

    def column(self, name: str) -> ColumnDescriptor | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]


class ColumnDefinition(BaseModel):
    """Column requested by a caller for create_table / add_column"""

    name: str
    type: str
    nullable: bool = True
    default: ColumnDefault | None = None
    unique: bool = False
    foreign_key: ForeignKeyTarget | None = None

    @field_validator("default", mode="before")
    @classmethod
    def _literal_default(cls, value: Any) -> Any:
        if isinstance(value, str | int | float | bool):
            return ColumnDefault.literal(value)
        return value


class ColumnChangeRequest(BaseModel):
    """Requested change to an existing column"""

    type: str | None = None
    not_null: bool | None = None
    foreign_key: ForeignKeyTarget | None = None
    remove_foreign_key: bool = False

    @model_validator(mode="after")
    def _check_foreign_key_flags(self) -> "ColumnChangeRequest":
        if self.foreign_key is not None and self.remove_foreign_key:
            raise ValueError("foreign_key and remove_foreign_key are mutually exclusive")
        return self

    @property
    def is_empty(self) -> bool:
        return (
            self.type is None
            and self.not_null is None
            and self.foreign_key is None
            and not self.remove_foreign_key
        )


class SearchPredicate(BaseModel):
    """One search condition over an indexed column"""

    column: str
    operator: Literal["eq", "lt", "le", "gt", "ge", "ne", "is_null", "is_not_null"] = "eq"
    value: str | int | float | bool | None = None


class SchemaSnapshot(BaseModel):
    """Immutable, versioned capture of the user-table schema"""

    id: str
    version: int
    name: str | None = None
    description: str | None = None
    full_schema: str
    tables_json: str
    schema_hash: str
    created_at: str | None = None
    created_by: str | None = None
    snapshot_type: SnapshotType = "manual"
    mirror_key: str | None = None


# Caller identity: a closed union, discriminated on ``kind``


class AdminCaller(BaseModel):
    kind: Literal["admin"] = "admin"
    admin_id: str | None = None


class EndUserCaller(BaseModel):
    kind: Literal["end_user"] = "end_user"
    user_id: str | None = None


class ApiKeyCaller(BaseModel):
    kind: Literal["api_key"] = "api_key"
    key_id: str | None = None


class AnonymousCaller(BaseModel):
    kind: Literal["anonymous"] = "anonymous"


AccessContext = Annotated[
    Union[AdminCaller, EndUserCaller, ApiKeyCaller, AnonymousCaller],
    Field(discriminator="kind"),
]
