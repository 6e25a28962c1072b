"""Domain layer: models, results and the error taxonomy."""

from .errors import (
    AccessDenied,
    AuthenticationRequired,
    DuplicateName,
    InvalidIdentifier,
    NotFound,
    StorageFailure,
    SystemTableProtected,
    TablexError,
    UnsupportedQuery,
    ValidationFailed,
)
from .models import (
    AccessContext,
    AdminCaller,
    AnonymousCaller,
    ApiKeyCaller,
    ColumnChangeRequest,
    ColumnDefault,
    ColumnDefinition,
    ColumnDescriptor,
    ColumnType,
    EndUserCaller,
    ForeignKeyDescriptor,
    ForeignKeyTarget,
    IndexDescriptor,
    SchemaSnapshot,
    SearchPredicate,
    TableDescriptor,
    TableSchema,
)
from .results import (
    SearchableColumn,
    SearchResult,
    SnapshotComparison,
    SnapshotPage,
    TableDataResult,
    ValidationResult,
)

__all__ = [
    "AccessContext",
    "AccessDenied",
    "AdminCaller",
    "AnonymousCaller",
    "ApiKeyCaller",
    "AuthenticationRequired",
    "ColumnChangeRequest",
    "ColumnDefault",
    "ColumnDefinition",
    "ColumnDescriptor",
    "ColumnType",
    "DuplicateName",
    "EndUserCaller",
    "ForeignKeyDescriptor",
    "ForeignKeyTarget",
    "IndexDescriptor",
    "InvalidIdentifier",
    "NotFound",
    "SchemaSnapshot",
    "SearchPredicate",
    "SearchResult",
    "SearchableColumn",
    "SnapshotComparison",
    "SnapshotPage",
    "StorageFailure",
    "SystemTableProtected",
    "TableDataResult",
    "TableDescriptor",
    "TableSchema",
    "TablexError",
    "UnsupportedQuery",
    "ValidationFailed",
    "ValidationResult",
]
