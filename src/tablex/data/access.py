"""
Access Control Gate

Resolves the row-visibility rule for a (table policy, caller) pair and wraps
the record and search operations with it:

- admin and API-key callers: unrestricted
- end users with an id on a private table: rows they own only
- end users without an id and anonymous callers on a private table: reads come
  back empty, writes are refused
- public tables: unrestricted for every caller
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from tablex.core.settings import CoreSettings
from tablex.domain.errors import AccessDenied, AuthenticationRequired, ValidationFailed
from tablex.domain.models import (
    AccessContext,
    AccessPolicy,
    AdminCaller,
    AnonymousCaller,
    ApiKeyCaller,
    EndUserCaller,
    SearchPredicate,
)
from tablex.domain.results import SearchResult, TableDataResult
from tablex.schema.catalog import SchemaCatalog
from tablex.schema.ddl import NameValidator
from tablex.storage.port import Row, StoragePort
from tablex.storage.system_schema import UPSERT_TABLE_POLICY

from .records import RecordRepository, utc_timestamp
from .search import SearchIndexResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AccessDecision:
    """Outcome of resolving a caller against a table policy

    mode:
    - unrestricted: no row filter
    - owner: rows filtered on ``owner_filter``
    - anonymous: no resolved caller id; reads empty, writes need authentication
    - unowned: private table without an owner column; reads empty, writes denied
    """

    mode: Literal["unrestricted", "owner", "anonymous", "unowned"]
    owner_column: str | None = None
    user_id: str | None = None
    owner_filter: dict[str, Any] = field(default_factory=dict)


class AccessControlGate:
    """Applies table policies to record operations"""

    def __init__(
        self,
        storage: StoragePort,
        catalog: SchemaCatalog,
        validator: NameValidator,
        records: RecordRepository,
        search: SearchIndexResolver,
        settings: CoreSettings,
    ) -> None:
        self.storage = storage
        self.catalog = catalog
        self.validator = validator
        self.records = records
        self.search = search
        self.settings = settings

    # Policies

    def get_table_access_policy(self, table: str) -> AccessPolicy:
        self.validator.validate_identifier(table, "table")
        if self.validator.is_protected(table):
            return "system"
        return self.catalog.get_access_policy(self.catalog.require_table(table))

    def set_table_access_policy(self, table: str, policy: Literal["public", "private"]) -> None:
        """
        Store the access policy of a user table.

        Raises:
            ValidationFailed: On an unknown policy, or ``private`` for a table
                without the owner column
        """
        self.validator.validate_table_name(table)
        resolved = self.catalog.require_table(table)
        if policy not in ("public", "private"):
            raise ValidationFailed(message=f"Unknown access policy: {policy!r}")
        if policy == "private":
            columns = {column.name for column in self.catalog.get_columns(resolved)}
            if self.settings.owner_column not in columns:
                raise ValidationFailed(
                    message=(
                        f"Table '{resolved}' has no '{self.settings.owner_column}' column "
                        "and cannot be private"
                    ),
                    errors=[f"Add a '{self.settings.owner_column}' TEXT column first"],
                )
        self.storage.prepare(UPSERT_TABLE_POLICY).bind(resolved, policy, utc_timestamp()).run()
        logger.info("Access policy of '%s' set to %s", resolved, policy)

    # Decisions

    def resolve(self, table: str, caller: AccessContext) -> AccessDecision:
        """Resolve the decision for ``caller`` on an existing user table."""
        if isinstance(caller, AdminCaller):
            return AccessDecision(mode="unrestricted")
        if isinstance(caller, ApiKeyCaller):
            # Known gap: API keys are not scoped by capability grants yet
            logger.debug("API key %s treated as admin on '%s'", caller.key_id, table)
            return AccessDecision(mode="unrestricted")

        if self.catalog.get_access_policy(table) == "public":
            return AccessDecision(mode="unrestricted")

        if isinstance(caller, EndUserCaller) and caller.user_id:
            owner_column = self.settings.owner_column
            columns = {column.name for column in self.catalog.get_columns(table)}
            if owner_column not in columns:
                return AccessDecision(mode="unowned", user_id=caller.user_id)
            return AccessDecision(
                mode="owner",
                owner_column=owner_column,
                user_id=caller.user_id,
                owner_filter={owner_column: caller.user_id},
            )
        if isinstance(caller, EndUserCaller | AnonymousCaller):
            return AccessDecision(mode="anonymous")
        raise TypeError(f"Unknown caller kind: {caller!r}")

    def _decide(self, table: str, caller: AccessContext) -> tuple[str, AccessDecision]:
        self.validator.validate_table_name(table)
        resolved = self.catalog.require_table(table)
        return resolved, self.resolve(resolved, caller)

    def _refuse_write(self, table: str, decision: AccessDecision) -> None:
        if decision.mode == "anonymous":
            raise AuthenticationRequired(
                message=f"Authentication is required to modify private table '{table}'"
            )
        if decision.mode == "unowned":
            raise AccessDenied(message=f"Private table '{table}' has no owner column")

    # Reads

    def get_table_data(
        self,
        table: str,
        caller: AccessContext,
        limit: int | None = None,
        offset: int = 0,
        sort_by: str | None = None,
        sort_order: str = "DESC",
    ) -> TableDataResult:
        resolved, decision = self._decide(table, caller)
        if decision.mode in ("anonymous", "unowned"):
            page_size = self.settings.default_page_size if limit is None else limit
            return TableDataResult(data=[], total=0, limit=page_size, offset=offset)
        return self.records.get_table_data_with_sort(
            resolved, sort_by, sort_order, limit, offset, decision.owner_filter or None
        )

    def get_record_by_id(self, table: str, record_id: str, caller: AccessContext) -> Row | None:
        """
        Fetch one row as the caller may see it.

        Returns None when the row is missing, owned by another end user, or the
        caller cannot read the table (anonymous, or a private table without an
        owner column). Updating or deleting another user's row raises NotFound.
        """
        resolved, decision = self._decide(table, caller)
        if decision.mode in ("anonymous", "unowned"):
            return None
        return self.records.get_record_by_id(resolved, record_id, decision.owner_filter or None)

    def search_records(
        self,
        table: str,
        predicates: list[SearchPredicate],
        caller: AccessContext,
        offset: int = 0,
        limit: int | None = None,
    ) -> SearchResult:
        resolved, decision = self._decide(table, caller)
        if decision.mode in ("anonymous", "unowned"):
            self.search.build_conditions(resolved, predicates)
            page_size = self.settings.default_page_size if limit is None else limit
            return SearchResult(data=[], total=0, limit=page_size, offset=offset, has_more=False)
        return self.search.search_records(
            resolved, predicates, offset, limit, decision.owner_filter or None
        )

    # Writes

    def create_record(self, table: str, data: Mapping[str, Any], caller: AccessContext) -> Row:
        """Insert a row; on private tables the owner column is stamped with the caller id."""
        resolved, decision = self._decide(table, caller)
        self._refuse_write(resolved, decision)
        payload = dict(data)
        if decision.mode == "owner":
            assert decision.owner_column is not None
            payload[decision.owner_column] = decision.user_id
        return self.records.create_record(resolved, payload)

    def update_record(
        self, table: str, record_id: str, data: Mapping[str, Any], caller: AccessContext
    ) -> Row:
        """
        Update a row the caller may modify.

        Raises:
            AuthenticationRequired: No caller id on a private table
            AccessDenied: The payload tries to hand the row to another owner
            NotFound: No such row, or the row belongs to someone else
        """
        resolved, decision = self._decide(table, caller)
        self._refuse_write(resolved, decision)
        payload = dict(data)
        if decision.mode == "owner":
            assert decision.owner_column is not None
            if decision.owner_column in payload:
                if payload[decision.owner_column] != decision.user_id:
                    raise AccessDenied(
                        message=(
                            f"Cannot change '{decision.owner_column}' of a record in "
                            f"'{resolved}'"
                        )
                    )
                del payload[decision.owner_column]
        return self.records.update_record(
            resolved, record_id, payload, decision.owner_filter or None
        )

    def delete_record(self, table: str, record_id: str, caller: AccessContext) -> None:
        resolved, decision = self._decide(table, caller)
        self._refuse_write(resolved, decision)
        self.records.delete_record(resolved, record_id, decision.owner_filter or None)
