"""Unified domain error taxonomy for schema and data operations."""

from dataclasses import dataclass, field


@dataclass(slots=True)
class TablexError(Exception):
    """Base class for every failure raised by the core."""

    message: str
    code: str = "error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class InvalidIdentifier(TablexError):
    """Raised when a table, column or index name is not a valid identifier."""

    code: str = "invalid_identifier"


@dataclass(slots=True)
class SystemTableProtected(TablexError):
    """Raised when an operation targets a protected system table."""

    code: str = "system_table_protected"


@dataclass(slots=True)
class NotFound(TablexError):
    """Raised when a table, column, index, record or snapshot does not exist."""

    code: str = "not_found"


@dataclass(slots=True)
class ValidationFailed(TablexError):
    """Raised when pre-flight validation rejects a change or payload."""

    code: str = "validation_failed"
    errors: list[str] = field(default_factory=list)
    conflicting_rows: int = 0


@dataclass(slots=True)
class DuplicateName(TablexError):
    """Raised when creating an object whose name is already taken."""

    code: str = "duplicate_name"


@dataclass(slots=True)
class AuthenticationRequired(TablexError):
    """Raised when a private-table write has no resolved caller id."""

    code: str = "authentication_required"


@dataclass(slots=True)
class AccessDenied(TablexError):
    """Raised when the caller is identified but not allowed to perform the write."""

    code: str = "access_denied"


@dataclass(slots=True)
class UnsupportedQuery(TablexError):
    """Raised for search predicates or raw queries the core refuses to run."""

    code: str = "unsupported_query"


@dataclass(slots=True)
class StorageFailure(TablexError):
    """Opaque failure reported by the underlying storage engine."""

    code: str = "storage_failure"
