"""Record access: repository, access-control gate and indexed search."""

from .access import AccessControlGate, AccessDecision
from .records import RecordRepository
from .search import ALLOWED_OPERATORS, SearchIndexResolver

__all__ = [
    "ALLOWED_OPERATORS",
    "AccessControlGate",
    "AccessDecision",
    "RecordRepository",
    "SearchIndexResolver",
]
