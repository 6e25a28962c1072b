"""Typed result envelopes returned by core operations and the CLI."""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from .models import SchemaSnapshot


class ValidationResult(BaseModel):
    """Outcome of a pre-flight check"""

    valid: bool
    errors: list[str] = []
    warnings: list[str] = []
    conflicting_rows: int = 0


class TableDataResult(BaseModel):
    """One page of rows"""

    data: list[dict[str, Any]]
    total: int
    limit: int | None = None
    offset: int = 0


class SearchResult(TableDataResult):
    """One page of search hits"""

    has_more: bool = False


class SnapshotPage(BaseModel):
    snapshots: list[SchemaSnapshot]
    total: int


class SnapshotComparison(BaseModel):
    """Textual difference between two snapshots"""

    added: list[str] = []
    removed: list[str] = []
    modified: list[str] = []

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)


class SearchableColumn(BaseModel):
    name: str
    type: str


@dataclass(slots=True)
class CommandResult:
    """Common CLI response payload."""

    success: bool
    code: str = "ok"
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def as_json_dict(self) -> dict[str, Any]:
        """Return a stable machine-readable structure."""
        return {
            "success": self.success,
            "code": self.code,
            "message": self.message,
            "data": self.data,
        }
