"""
Storage Port Protocols

Defines the narrow contract the core uses to reach the SQL engine (prepared
statements plus one all-or-nothing batch primitive) and the optional object
store used to mirror snapshot blobs.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from pydantic import BaseModel, Field

Row = dict[str, Any]


class RunResult(BaseModel):
    """Result of a statement executed for its effect

    Attributes:
        changes: Rows inserted, updated or deleted by the statement
    """

    changes: int = Field(default=0, description="Rows affected")


class QueryResult(BaseModel):
    """Rows returned by a statement"""

    rows: list[Row] = Field(default_factory=list, description="Result rows")


class Statement(Protocol):
    """A prepared statement; ``bind`` returns a statement carrying the parameters"""

    sql: str

    def bind(self, *params: Any) -> "Statement": ...

    def run(self) -> RunResult: ...

    def all(self) -> QueryResult: ...

    def first(self) -> Row | None: ...


class StoragePort(Protocol):
    """Protocol for the SQL engine behind the core

    The engine offers no transaction primitive besides ``batch``: every
    statement in a batch is applied, or none is.
    """

    def prepare(self, sql: str) -> Statement: ...

    def batch(self, statements: Sequence[Statement]) -> list[RunResult]: ...


class ObjectStore(Protocol):
    """Best-effort key/value blob storage"""

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, text: str) -> None: ...

    def delete(self, key: str) -> None: ...
